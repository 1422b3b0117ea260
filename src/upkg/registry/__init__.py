"""Repository feed parsers.

Each module turns one ecosystem's index format into PackageRecord values:
- debian.py: Packages indexes and Release files
- alpine.py: APKINDEX
- rpm.py: repomd.xml and primary.xml
- pacman.py: sync databases
- brew.py: formula JSON and GHCR image indexes
- nix.py: narinfo, Hydra builds, search hits, static index
- nuget.py: OData Atom feeds (Chocolatey)
- winget.py: winget.run package and manifest JSON
- compression.py: shared decompression helpers
"""
