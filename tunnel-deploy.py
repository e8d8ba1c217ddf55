#!/usr/bin/env python3
from tunnel_deploy.deployer.cli import main

if __name__ == "__main__":
    main()
