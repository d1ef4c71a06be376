from tutor.chat.hub import ChatHub, hub

__all__ = ["ChatHub", "hub"]
