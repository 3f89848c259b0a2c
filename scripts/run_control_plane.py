#!/usr/bin/env python3
"""
Load Balancer Control Plane Script
"""
import argparse
import sys
from pathlib import Path

from xdp_lb.config import ControlPlaneConfig
from xdp_lb.core import run
from xdp_lb.errors import ConfigError


class ControlPlaneManager:
    """Builds the launch configuration and runs the control plane"""

    def __init__(self, args: argparse.Namespace):
        self.args = args

    def load_config(self) -> ControlPlaneConfig:
        """Load configuration from file, then apply command line overrides"""
        if self.args.config and Path(self.args.config).exists():
            config = ControlPlaneConfig.from_json(self.args.config)
        else:
            if self.args.config:
                print(f"Config file {self.args.config} not found, using default config")
            config = ControlPlaneConfig()

        if self.args.interface is not None:
            config.interface = self.args.interface
        if self.args.port is not None:
            config.port = self.args.port
        if self.args.program is not None:
            config.program_path = self.args.program
        if self.args.simulate:
            config.simulate = True
        if self.args.log_level is not None:
            config.log_level = self.args.log_level

        config.validate()
        return config

    def start(self) -> int:
        """Start the control plane"""
        try:
            config = self.load_config()
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        return run(config)

    def create_default_config(self) -> int:
        """Write the default configuration file"""
        path = self.args.config or "xdp_lb.json"
        ControlPlaneConfig().to_json(path)
        print(f"Created default configuration file: {path}")
        return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="L4 XDP load balancer control plane")
    parser.add_argument("interface", nargs="?", help="network interface to attach to (default: lo)")
    parser.add_argument("--port", type=int, help="port to load balance (prompted for when omitted)")
    parser.add_argument("--config", help="JSON file with launch options")
    parser.add_argument("--program", help="XDP program source passed to bcc")
    parser.add_argument("--simulate", action="store_true", help="use in-memory tables instead of loading XDP")
    parser.add_argument("--log-level", help="logging level (default: INFO)")
    parser.add_argument("--create-config", action="store_true", help="write the default config file and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main function"""
    args = parse_args(argv)
    manager = ControlPlaneManager(args)

    if args.create_config:
        return manager.create_default_config()
    return manager.start()


if __name__ == "__main__":
    sys.exit(main())
