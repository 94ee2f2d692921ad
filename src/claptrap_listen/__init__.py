"""Bridge that forwards inbound messages to a local mail-transport command.

Messages arrive either over HTTP (``PUT /send``) or from a RabbitMQ queue,
are normalized into a subject/from/body text block and piped into
``msmtp`` (or any compatible command) for delivery.

Example:
    Serving the HTTP listener::

        from claptrap_listen.api import create_app
        from claptrap_listen.config import load_settings
        from claptrap_listen.dispatcher import MailDispatcher

        dispatcher = MailDispatcher(load_settings())
        app = create_app(dispatcher)

Authors:
    Softwell S.r.l.
    Giovanni Porcari
"""

__version__ = "0.1.0"
