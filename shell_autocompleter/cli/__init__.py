# shell_autocompleter/cli/__init__.py
