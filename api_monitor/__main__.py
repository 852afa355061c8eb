from api_monitor.main import main

raise SystemExit(main())
