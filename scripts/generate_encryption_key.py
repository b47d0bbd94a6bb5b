"""
Generate a Fernet key for ENCRYPTION_KEY.

Usage:
    python scripts/generate_encryption_key.py

Keep the key secret and use a different one per environment. Losing it makes
every stored credential unreadable.
"""
from cryptography.fernet import Fernet


if __name__ == "__main__":
    key = Fernet.generate_key().decode()
    print("Add this to your .env file:")
    print(f"ENCRYPTION_KEY={key}")
