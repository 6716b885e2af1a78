"""Static region data for website origins.

Maps each region to the hosted zone id and website endpoint suffix of its
static website hosting service. Pure data; no logic beyond lookup.
"""

REGION_MAP: dict[str, dict[str, str]] = {
    "ap-northeast-1": {
        "hosted_zone_id": "Z2M4EHUR26P7ZW",
        "website_endpoint": "s3-website-ap-northeast-1.amazonaws.com",
    },
    "ap-northeast-2": {
        "hosted_zone_id": "Z3W03O7B5YMIYP",
        "website_endpoint": "s3-website.ap-northeast-2.amazonaws.com",
    },
    "ap-south-1": {
        "hosted_zone_id": "Z11RGJOFQNVJUP",
        "website_endpoint": "s3-website.ap-south-1.amazonaws.com",
    },
    "ap-southeast-1": {
        "hosted_zone_id": "Z3O0J2DXBE1FTB",
        "website_endpoint": "s3-website-ap-southeast-1.amazonaws.com",
    },
    "ap-southeast-2": {
        "hosted_zone_id": "Z1WCIGYICN2BYD",
        "website_endpoint": "s3-website-ap-southeast-2.amazonaws.com",
    },
    "eu-central-1": {
        "hosted_zone_id": "Z21DNDUVLTQW6Q",
        "website_endpoint": "s3-website.eu-central-1.amazonaws.com",
    },
    "eu-west-1": {
        "hosted_zone_id": "Z1BKCTXD74EZPE",
        "website_endpoint": "s3-website-eu-west-1.amazonaws.com",
    },
    "sa-east-1": {
        "hosted_zone_id": "Z7KQH4QJS55SO",
        "website_endpoint": "s3-website-sa-east-1.amazonaws.com",
    },
    "us-east-1": {
        "hosted_zone_id": "Z3AQBSTGFYJSTF",
        "website_endpoint": "s3-website-us-east-1.amazonaws.com",
    },
    "us-east-2": {
        "hosted_zone_id": "Z2O1EMRO9K5GLX",
        "website_endpoint": "s3-website.us-east-2.amazonaws.com",
    },
    "us-west-1": {
        "hosted_zone_id": "Z2F56UZL2M1ACD",
        "website_endpoint": "s3-website-us-west-1.amazonaws.com",
    },
    "us-west-2": {
        "hosted_zone_id": "Z3BJ6K6RIION7M",
        "website_endpoint": "s3-website-us-west-2.amazonaws.com",
    },
}


def website_origin(bucket: str, region: str) -> str:
    """Return the website origin hostname for a bucket in a region.

    Raises:
        KeyError: If the region is unknown.
    """
    return f"{bucket}.{REGION_MAP[region]['website_endpoint']}"


__all__ = ["REGION_MAP", "website_origin"]
