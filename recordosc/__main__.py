# Main entry point: python -m recordosc
from recordosc.core.runner import main

if __name__ == "__main__":
    raise SystemExit(main())
