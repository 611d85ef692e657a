from qmeter.cli import main

raise SystemExit(main())
