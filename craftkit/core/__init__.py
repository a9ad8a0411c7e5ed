"""
Core Layer.

Resolution, installation, loader layering, sign-in and launch-command
synthesis. Import the submodules directly; `craftkit.core.launcher.Launcher`
is the facade over all of them.
"""
