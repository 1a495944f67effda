"""Spencer build tooling - pipeline orchestrator and bootable image assembler.

This package drives the cross-compiled A9NLoader bootloader, A9N kernel and
Nun OS core builds, stages their outputs into a canonical layout, assembles
a FAT32 disk image and can boot it under QEMU.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
