from pack_bundles.cli import main

raise SystemExit(main())
