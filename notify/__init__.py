"""notify/ -- Outbound notifications (verification email).

Layer rule: notify/ imports only stdlib and core/. auth/ receives a mailer
object from the API layer and never imports notify/ at runtime.
"""
