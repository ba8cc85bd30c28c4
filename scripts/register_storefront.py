
import argparse

from catalog_hub.core.logging import configure_logging
from catalog_hub.db.session import SessionLocal
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError
from catalog_hub.integrations.registry import build_adapter
from catalog_hub.repository.storefront_repo import MARKETPLACES, StorefrontUpsertDTO, upsert


# Create or update one storefront and its credentials; run once per seller account:
#   python -m scripts.register_storefront ozon-main --marketplace ozon --client-id 123 --api-key ...
#   python -m scripts.register_storefront market-main --marketplace market --api-key ... \
#       --business-id 111 --campaign-id 222
# (PYTHONPATH must include backend/)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="register a marketplace storefront")
    p.add_argument("code")
    p.add_argument("--marketplace", required=True, choices=MARKETPLACES)
    p.add_argument("--name")
    p.add_argument("--client-id")
    p.add_argument("--api-key")
    p.add_argument("--business-id")
    p.add_argument("--campaign-id")
    p.add_argument("--disabled", action="store_true")
    return p.parse_args(argv)


def main(argv=None):
    configure_logging()
    args = parse_args(argv)
    dto = StorefrontUpsertDTO(
        marketplace=args.marketplace,
        name=args.name,
        enabled=not args.disabled,
        client_id=args.client_id,
        api_key=args.api_key,
        business_id=args.business_id,
        campaign_id=args.campaign_id,
    )
    db = SessionLocal()
    try:
        sf = upsert(db, args.code, dto)
        try:
            build_adapter(sf).close()
            state = "credentials complete"
        except StorefrontConfigError as e:
            state = f"incomplete: {e}"
        print(f"storefront {sf.code} ({sf.marketplace}) saved, enabled={sf.enabled}, {state}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
