"""
Combined Overpass QL query for every amenity category
"""

# (element types, tag filter) per category, queried with the same around()
AMENITY_FILTERS = [
    # Coastline
    (("way",), '["natural"="coastline"]'),
    # Beach
    (("way", "node"), '["natural"="beach"]'),
    # Airport
    (("way", "node"), '["aeroway"~"^(aerodrome|terminal)$"]'),
    # Main towns and cities only
    (("node",), '["place"~"^(town|city)$"]'),
    # Public transport
    (("node",), '["highway"="bus_stop"]'),
    (("node",), '["public_transport"="platform"]["bus"="yes"]'),
    (("node",), '["public_transport"="platform"]["train"="yes"]'),
    (("node",), '["railway"="station"]'),
    (("node",), '["amenity"="bus_station"]'),
    # Shops
    (("node", "way"), '["shop"="supermarket"]'),
    (("node", "way"), '["shop"="convenience"]'),
    # Food
    (("node", "way"), '["amenity"~"^(restaurant|fast_food)$"]'),
    (("node", "way"), '["amenity"="cafe"]'),
]


def build_amenities_query(lat: float, lon: float, radius_m: int, timeout_s: int = 60) -> str:
    """One round trip for all categories; 'out geom' gives way vertices"""
    statements = []
    for element_types, tag_filter in AMENITY_FILTERS:
        for element_type in element_types:
            statements.append(f"    {element_type}(around:{radius_m},{lat},{lon}){tag_filter};")
    body = "\n".join(statements)
    return f"""
[out:json][timeout:{timeout_s}];
(
{body}
);
out geom;
out tags;
"""
