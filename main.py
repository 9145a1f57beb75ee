from app.harvester.cli import main

if __name__ == "__main__":
    # Run parameters come from HARVEST_* environment variables or CLI flags.
    raise SystemExit(main())
