"""Authentication and authorization.

Learn: Users authenticate with a Bearer JWT whose subject is their user
id. The same token authorizes the WebSocket (?token=), and the user id
decides which broadcast channels the socket may join.
"""
