"""Graphics Sandbox API.

Short-lived sandboxes that compile submitted programs and stream their
graphical output back to the browser.
"""

__version__ = "1.0.0"
