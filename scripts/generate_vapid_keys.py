"""
Print a fresh VAPID key pair as .env lines.

    python -m scripts.generate_vapid_keys >> .env
"""

from dosepush.infrastructure.vapid import generate_vapid_keys


def main() -> None:
    public_key, private_pem = generate_vapid_keys()
    private_one_line = private_pem.strip().replace("\n", "\\n")

    print(f"PUSH_VAPID_PUBLIC_KEY={public_key}")
    print(f"PUSH_VAPID_PRIVATE_KEY={private_one_line}")
    print("PUSH_VAPID_SUBJECT=mailto:you@example.com")


if __name__ == "__main__":
    main()
