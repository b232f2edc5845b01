"""Package entry point for ``python -m line_drive_bridge``.

WHY: Operators run the bridge as ``python -m line_drive_bridge serve`` or
replay a captured webhook body with ``python -m line_drive_bridge replay``.

HOW: Delegates straight to the CLI's main(), which dispatches subcommands.
"""

if __name__ == "__main__":
    from line_drive_bridge.cli import main
    main()
