"""REPOSYNC identity constants, shared by the CLI banner and reports."""

__version__ = "0.4.0"
__codename__ = "REPOSYNC"
__tagline__ = "Pull first. Push clean."

BANNER = r"""
  ___ ___ ___  ___  ___ _   _ _  _  ___
 | _ \ __| _ \/ _ \/ __| | | | \| |/ __|
 |   / _||  _/ (_) \__ \ |_| | .` | (__
 |_|_\___|_|  \___/|___/\__, |_|\_|\___|
                        |___/
"""
