from flask import current_app

from ordersync.helpship.gateway import HelpshipGateway

EXTENSION_KEY = "ordersync.helpship"


def get_helpship_gateway() -> HelpshipGateway:
    '''
    Returns the HelpshipGateway bound to the current app.

    One gateway (and so one token cache) per application; tests swap it by
    assigning app.extensions["ordersync.helpship"].
    '''
    gateway = current_app.extensions.get(EXTENSION_KEY)
    if gateway is None:
        gateway = HelpshipGateway(config=current_app.config)
        current_app.extensions[EXTENSION_KEY] = gateway
    return gateway
