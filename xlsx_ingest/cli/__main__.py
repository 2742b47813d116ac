from xlsx_ingest.cli.main import main

raise SystemExit(main())
