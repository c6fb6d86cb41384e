"""Create a console or storefront account.

Usage: python scripts/create_user.py <username> <password> <admin|branch|customer> [branch_id]
"""

import sys, pathlib, asyncio, uuid
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from storefront.core.db import SessionLocal
from storefront.core.security import get_password_hash
from storefront.models import AppUser

ROLES = {"admin", "branch", "customer"}


async def main(username: str, password: str, role: str, branch_id: int | None) -> None:
    if role not in ROLES:
        raise SystemExit(f"role must be one of {sorted(ROLES)}")
    if role == "branch" and branch_id is None:
        raise SystemExit("branch accounts need a branch_id")
    async with SessionLocal() as s:
        async with s.begin():
            user = AppUser(
                user_code=uuid.uuid4().hex[:12].upper(),
                username=username,
                password_hash=get_password_hash(password),
                display_name=username,
                role=role,
                branch_id=branch_id,
                is_active=True,
            )
            s.add(user)
        print("created:", user.user_code, role)


if __name__ == "__main__":
    if len(sys.argv) < 4:
        raise SystemExit(__doc__)
    asyncio.run(main(sys.argv[1], sys.argv[2], sys.argv[3], int(sys.argv[4]) if len(sys.argv) > 4 else None))
