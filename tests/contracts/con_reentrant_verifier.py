"""
Verifier that calls back into the token while it is being consulted.

Holds a public balance on the token and tries to move it from inside verify().
"""

token = Variable()

@construct
def seed(target: str = 'con_zk_token'):
    token.set(target)

@export
def verify(circuit_id: str, proof: dict, public_signals: list):
    ledger = importlib.import_module(token.get())
    ledger.transfer(amount=1, to='mallory')
    return True
