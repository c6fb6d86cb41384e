import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import text
from storefront.core.db import SessionLocal
from storefront.models import Base

async def main():
    async with SessionLocal() as s:
        one = await s.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())

        iso = await s.execute(text("SELECT @@transaction_isolation"))
        print("transaction_isolation:", iso.scalar())

        # Branch lookups rely on the spherical distance function (MySQL >= 5.7.6)
        km = await s.execute(
            text("SELECT ST_Distance_Sphere(POINT(46.6753, 24.7136), POINT(39.1925, 21.4858), 6371000) / 1000")
        )
        print("riyadh-jeddah km:", round(float(km.scalar()), 1))

        rows = await s.execute(
            text("SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_SCHEMA = DATABASE()")
        )
        existing = {r[0] for r in rows}
        missing = sorted(set(Base.metadata.tables) - existing)
        print("missing tables:", ", ".join(missing) if missing else "none")

asyncio.run(main())
