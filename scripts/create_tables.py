import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from storefront.core.db import engine
from storefront.models import Base

async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("tables:", ", ".join(sorted(Base.metadata.tables)))

asyncio.run(main())
