import argparse

from fleetcore.src import accounts
from fleetcore.src.db import sessionMaker, engine, ORMbase
from fleetcore.src.enums import PlanType, PlatformRole
from fleetcore.src.constants import (
    PLATFORM_ADMIN_EMAIL,
    PLATFORM_ADMIN_PASSWORD,
    PLATFORM_COMPANY_SLUG,
)


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    ORMbase.metadata.drop_all(engine)
    print("* All tables deleted")


def createTables():
    ORMbase.metadata.create_all(engine)
    print("* All tables created")


def initDB():
    """Create the platform company and its platform admin owner."""
    session = sessionMaker()
    try:
        if accounts.companyBySlug(session, PLATFORM_COMPANY_SLUG) is not None:
            print("* Platform company already exists")
            return
        company, admin, _ = accounts.signup(
            session,
            companyName="Fleetcore platform",
            slug=PLATFORM_COMPANY_SLUG,
            ownerName="Platform admin",
            email=PLATFORM_ADMIN_EMAIL,
            password=PLATFORM_ADMIN_PASSWORD,
            plan=PlanType.ENTERPRISE,
            platformRole=PlatformRole.PLATFORM_ADMIN,
        )
        session.commit()
        print(f"* Created platform company '{company.slug}' and admin {admin.email}")
        print("* Initialization completed")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    args = parser.parse_args()

    if args.rm:
        removeTables()
    if args.cr:
        createTables()
    if args.init:
        initDB()
