"""Entry point for Smart Copier.

Usage:
    python -m smart_copier                 Run the sync engine in the foreground
    python -m smart_copier start           Same as above
    python -m smart_copier history [N]     Print the last N ledger entries
    python -m smart_copier check-config    Validate and print the effective settings
"""


def main() -> None:
    """Delegate to the service CLI."""
    from smart_copier.service import main as service_main

    service_main()


if __name__ == "__main__":
    main()
