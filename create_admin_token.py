#!/usr/bin/env python3
"""
Скрипт для выпуска JWT-токена оператора (доступ к /approve, /reject, /status).

Использование:
    export SECRET_KEY="..."
    python create_admin_token.py --username operator --role ADMIN --hours 8
"""
import argparse
from datetime import timedelta

from storefront.core.auth import ADMIN_ROLES
from storefront.core.security import create_access_token


def main():
    parser = argparse.ArgumentParser(description='Выпустить JWT-токен администратора')
    parser.add_argument('--username', required=True, help='Имя оператора (попадет в логи)')
    parser.add_argument('--role', default='ADMIN', choices=sorted(ADMIN_ROLES), help='Роль')
    parser.add_argument('--hours', type=int, default=24, help='Срок действия токена в часах')

    args = parser.parse_args()

    token = create_access_token(
        data={"username": args.username, "role": args.role},
        expires_delta=timedelta(hours=args.hours),
    )

    print("=" * 50)
    print(f"🔑 Токен для '{args.username}' ({args.role}), действует {args.hours} ч.")
    print("=" * 50)
    print(token)


if __name__ == '__main__':
    main()
