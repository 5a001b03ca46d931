import sys

from xform_transformer.cli import main

sys.exit(main())
