from clientdesk.cli.main import main

raise SystemExit(main())
