"""
Core synchronization engine.

The reconciler classifies declared files against an installation directory,
the `TransferExecutor` materializes the resulting plan phase by phase, and the
`Installer` ties both to the installation markers and the local manifest copy.
`FileLoader` and `ManifestUpdater` cover on-demand loads and manifest authoring.
"""
