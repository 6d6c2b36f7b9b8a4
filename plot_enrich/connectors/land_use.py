"""
Portugal land use layers via DGT WMS GetFeatureInfo
"""

from typing import List, Optional

from ..config import get_config
from ..http_client import HttpClient
from ..models import LayerResult
from .base import area_buffer, first_present, http_scope, run_concurrently, safe_layer, wms_feature_info


def query_cos(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Carta de Ocupação do Solo 2018"""
    layer_id, layer_name = "pt-cos", "Carta de Ocupação do Solo (COS)"

    def call() -> LayerResult:
        url = f"{get_config().api.dgt_wms_base}/COS2018/wms"
        with http_scope(http) as client:
            features = wms_feature_info(client, url, "COS2018:COS2018v2", lat, lng, buffer_m=area_buffer(area_m2))
        if not features:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        p = features[0]["properties"]
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={
                "cos": first_present(p, ["COS18n4_L", "COS18n3_L", "COS2018_Leg", "Descricao"]),
                "cosCode": first_present(p, ["COS18n4_C", "COS18n3_C", "COS2018"]),
                "cosLevel1": first_present(p, ["COS18n1_L", "Nivel1"]),
                "cosLevel1Code": p.get("COS18n1_C"),
                "cosLevel2": first_present(p, ["COS18n2_L", "Nivel2"]),
                "cosLevel2Code": p.get("COS18n2_C"),
                "cosLevel3": first_present(p, ["COS18n3_L", "Nivel3"]),
                "cosLevel3Code": p.get("COS18n3_C"),
                "cosLevel4": p.get("COS18n4_L"),
                "cosLevel4Code": p.get("COS18n4_C"),
                "areaHa": p.get("Area_ha"),
            },
        )

    return safe_layer(layer_id, layer_name, call)


def query_clc(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """CORINE Land Cover 2012"""
    layer_id, layer_name = "pt-clc", "CORINE Land Cover (CLC)"

    def call() -> LayerResult:
        url = f"{get_config().api.dgt_wms_base}/CLC/wms"
        with http_scope(http) as client:
            features = wms_feature_info(client, url, "CLC2012", lat, lng, buffer_m=area_buffer(area_m2))
        if not features:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        p = features[0]["properties"]
        level3 = first_present(p, ["Legenda", "LABEL3", "Label3"])
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={
                "clc": level3 or p.get("Descricao"),
                "clcCode": first_present(p, ["CLC2012", "CODE_18", "Code_18"]),
                "areaHa": p.get("AREA_ha"),
                "clcLevel1": first_present(p, ["LABEL1", "Label1"]),
                "clcLevel2": first_present(p, ["LABEL2", "Label2"]),
                "clcLevel3": level3,
            },
        )

    return safe_layer(layer_id, layer_name, call)


def query_built_up(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Built-up areas (Áreas Edificadas 2018)"""
    layer_id, layer_name = "pt-built-up", "Built-up Areas"

    def call() -> LayerResult:
        url = f"{get_config().api.dgt_wms_base}/AE/wms"
        with http_scope(http) as client:
            features = wms_feature_info(client, url, "AreasEdificadas2018", lat, lng, buffer_m=area_buffer(area_m2))
        if not features:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        p = features[0]["properties"]
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={
                "isBuiltUp": True,
                "classification": first_present(p, ["Classe", "CLASSE", "Tipo"]),
                "source": "DGT Solo Urbano",
                "attributes": p,
            },
        )

    return safe_layer(layer_id, layer_name, call)


def query_land_use_layers(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> List[LayerResult]:
    """COS, CLC and built-up areas in parallel"""
    return run_concurrently([
        lambda: query_cos(lat, lng, area_m2, http),
        lambda: query_clc(lat, lng, area_m2, http),
        lambda: query_built_up(lat, lng, area_m2, http),
    ])
