from chainlab.cli import main

raise SystemExit(main())
