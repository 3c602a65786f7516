"""Generic graph viewing front end for C program analyses."""

__version__ = "0.1.0"
