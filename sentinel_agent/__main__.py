import sys

from sentinel_agent.agent import main

sys.exit(main())
