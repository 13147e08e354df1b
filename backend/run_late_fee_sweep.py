import logging
import os
from types import SimpleNamespace

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

try:
    from backend.fees_module import init_fees_module
    from backend.fees_module.sweeper import run_late_fee_sweep
except ImportError:
    from fees_module import init_fees_module
    from fees_module.sweeper import run_late_fee_sweep

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")


def main():
    state = SimpleNamespace()
    init_fees_module(state)
    updated = run_late_fee_sweep(state)
    print(f"Late fees refreshed on {updated} fee records.")


if __name__ == "__main__":
    main()
