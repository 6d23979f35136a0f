"""Built-in CLI sub-commands for agegate.

* :mod:`~agegate.commands.verify` -- ``verify``, ``status``, ``check`` and
  ``logout``, registered directly on the root app.
* :mod:`~agegate.commands.config` -- view, set, reset and discover the
  client configuration.
"""
