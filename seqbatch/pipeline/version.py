__version__ = "0.4.0"
__git_revision__ = ""
