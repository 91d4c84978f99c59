"""Shell-level adapters: commands, files, and the subprocess runner."""
