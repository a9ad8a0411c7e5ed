"""
craftkit: installation and launch orchestration for Minecraft-style game clients.
"""

__version__ = "0.4.0"
