# scripts/dev_jwt_token.py
import sys
from datetime import timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from app.shared.utils.security import create_access_token


def main():
    user_id = sys.argv[1] if len(sys.argv) > 1 else "dev-user-1"  # любой тестовый ID
    name = sys.argv[2] if len(sys.argv) > 2 else f"Dev {user_id}"
    token = create_access_token({"sub": user_id, "name": name}, timedelta(days=30))
    print(token)


if __name__ == "__main__":
    main()
