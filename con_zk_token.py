"""
ZK PRIVACY TOKEN

Value lives in two ledgers:
  - public balances keyed by account (issue / transfer / approve)
  - private notes: commitments appended to a capacity-bounded Merkle
    generation, spent notes tracked by nullifier

Merkle roots are never recomputed on-chain. Every new root is a claim carried
in the public signals of a proof checked by the bound verifier contract; the
contract only checks that the claimed old root equals the current one.

When a generation holds 2**subtree_height leaves it is closed: its root goes
into the archive (one leaf per generation) and an empty generation opens.

Public signal layouts (positional, decimal field elements):

  mint               old_root, new_root, commitment, amount, scan_tag
  mint_rollover      old_root, old_archive_root, new_root, new_archive_root,
                     commitment, amount, generation, scan_tag
  transfer           old_root, new_root, nullifier_a, nullifier_b,
                     commitment_a, commitment_b, conversion_amount,
                     out_x, out_y, scan_tag
  transfer_finalized old_root, archive_root, new_root, nullifier_a,
                     nullifier_b, commitment_a, commitment_b,
                     conversion_amount, out_x, out_y, scan_tag
  transfer_rollover  old_root, old_archive_root, new_root, new_archive_root,
                     nullifier_a, nullifier_b, commitment_a, commitment_b,
                     conversion_amount, out_x, out_y, scan_tag, generation

A zero nullifier or commitment marks an unused slot. out_x/out_y are the
owner coordinates of the first output; a conversion to public must send that
output to the sink point (SINK_X, SINK_Y).

Supply invariant: total_supply == public_supply + privacy_supply

Rejections are assertions whose message starts with a reason code,
e.g. 'StaleRoot: active root changed'.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

# BN254 scalar field; every public signal is an element of it
FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FEE_DENOMINATOR = 10000

def field_hash(tag: str):
    return int(hashlib.sha3("XZKT:" + tag), 16) % FIELD

# Sink point: no known private key, notes sent here can never be spent
SINK_X = field_hash("sink:x")
SINK_Y = field_hash("sink:y")

PROOF_KEYS = ['pi_a', 'pi_b', 'pi_c']

PROOF_SHAPES = {
    'mint': [
        'old_root', 'new_root', 'commitment', 'amount', 'scan_tag'
    ],
    'mint_rollover': [
        'old_root', 'old_archive_root', 'new_root', 'new_archive_root',
        'commitment', 'amount', 'generation', 'scan_tag'
    ],
    'transfer': [
        'old_root', 'new_root', 'nullifier_a', 'nullifier_b',
        'commitment_a', 'commitment_b', 'conversion_amount',
        'out_x', 'out_y', 'scan_tag'
    ],
    'transfer_finalized': [
        'old_root', 'archive_root', 'new_root', 'nullifier_a', 'nullifier_b',
        'commitment_a', 'commitment_b', 'conversion_amount',
        'out_x', 'out_y', 'scan_tag'
    ],
    'transfer_rollover': [
        'old_root', 'old_archive_root', 'new_root', 'new_archive_root',
        'nullifier_a', 'nullifier_b', 'commitment_a', 'commitment_b',
        'conversion_amount', 'out_x', 'out_y', 'scan_tag', 'generation'
    ]
}

PROOF_TYPES = ['mint', 'mint_rollover', 'transfer', 'transfer_finalized', 'transfer_rollover']
MINT_TYPES = ['mint', 'mint_rollover']
TRANSFER_TYPES = ['transfer', 'transfer_finalized', 'transfer_rollover']
BURN_TYPES = ['transfer', 'transfer_finalized']

PROTECTED_METADATA = ['operator', 'total_supply', 'public_supply', 'privacy_supply',
                      'burn_fee_bps', 'fee_sink']

HEX_DIGITS = '0123456789abcdef'

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# address -> int
balances = Hash(default_value=0)

# (owner, spender) -> int
approvals = Hash(default_value=0)

# contract metadata / config / supply counters
metadata = Hash()

# proof type -> {'contract': str, 'circuit': str}
verifiers = Hash()

# generation, next_leaf, subtree_height, archive_height, active_root, archive_root
tree = Hash()

# (generation, leaf_index) -> commitment
leaves = Hash()

# hex(commitment) -> {'generation': int, 'leaf_index': int}
commitments = Hash()

# generation -> finalized root
archived_roots = Hash()

# hex(nullifier) -> True once spent
nullifiers = Hash(default_value=False)

# 'locked' -> True while a mutating call is in flight
guard = Hash(default_value=False)

# counter for events
next_tx_id = Variable()

# Events
CommitmentAppendedEvent = LogEvent('CommitmentAppended', {
    'generation': {'type': int, 'idx': True},
    'commitment': {'type': str, 'idx': True},
    'leaf_index': {'type': int},
    'block_num': {'type': int}
})

NullifierSpentEvent = LogEvent('NullifierSpent', {
    'nullifier': {'type': str, 'idx': True}
})

GenerationFinalizedEvent = LogEvent('GenerationFinalized', {
    'generation': {'type': int, 'idx': True},
    'root': {'type': str},
    'archive_root': {'type': str}
})

MintedEvent = LogEvent('Minted', {
    'commitment': {'type': str, 'idx': True},
    'amount': {'type': int},
    'note': {'type': str},
    'scan_tag': {'type': str},
    'tx_id': {'type': int, 'idx': True}
})

ConvertToPrivacyEvent = LogEvent('ConvertToPrivacy', {
    'from': {'type': str, 'idx': True},
    'commitment': {'type': str, 'idx': True},
    'amount': {'type': int},
    'note': {'type': str},
    'scan_tag': {'type': str},
    'tx_id': {'type': int, 'idx': True}
})

PrivateTransferEvent = LogEvent('PrivateTransfer', {
    'commitments': {'type': str},
    'notes': {'type': str},
    'ephemeral_key': {'type': str},
    'scan_tag': {'type': str},
    'tx_id': {'type': int, 'idx': True}
})

ConvertToPublicEvent = LogEvent('ConvertToPublic', {
    'to': {'type': str, 'idx': True},
    'amount': {'type': int},
    'fee': {'type': int},
    'commitments': {'type': str},
    'notes': {'type': str},
    'ephemeral_key': {'type': str},
    'scan_tag': {'type': str},
    'tx_id': {'type': int, 'idx': True}
})

IssueEvent = LogEvent('Issue', {
    'to': {'type': str, 'idx': True},
    'amount': {'type': int},
    'tx_id': {'type': int, 'idx': True}
})

TransferEvent = LogEvent('Transfer', {
    'from': {'type': str, 'idx': True},
    'to': {'type': str, 'idx': True},
    'amount': {'type': int},
    'tx_id': {'type': int, 'idx': True}
})

ApproveEvent = LogEvent('Approve', {
    'from': {'type': str, 'idx': True},
    'to': {'type': str, 'idx': True},
    'amount': {'type': int},
    'tx_id': {'type': int, 'idx': True}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(subtree_height: int = 16,
         archive_height: int = 16,
         empty_root: int = 0,
         empty_archive_root: int = 0,
         verifier: str = 'con_zk_verifier'):
    assert 1 <= subtree_height <= 32, 'InvalidConfig: subtree height must be within 1..32'
    assert 1 <= archive_height <= 32, 'InvalidConfig: archive height must be within 1..32'

    metadata['name'] = "ZK Privacy Token"
    metadata['symbol'] = "ZKT"
    metadata['operator'] = ctx.caller

    metadata['total_supply'] = 0
    metadata['public_supply'] = 0
    metadata['privacy_supply'] = 0

    metadata['burn_fee_bps'] = 0
    metadata['fee_sink'] = ctx.caller

    tree['generation'] = 0
    tree['next_leaf'] = 0
    tree['subtree_height'] = subtree_height
    tree['archive_height'] = archive_height
    tree['active_root'] = to_field(empty_root)
    tree['archive_root'] = to_field(empty_archive_root)

    for proof_type in PROOF_TYPES:
        verifiers[proof_type] = {'contract': verifier, 'circuit': proof_type}

    guard['locked'] = False
    next_tx_id.set(1)

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'name': metadata['name'],
        'symbol': metadata['symbol'],
        'operator': metadata['operator'],
        'total_supply': metadata['total_supply'],
        'burn_fee_bps': metadata['burn_fee_bps'],
        'fee_sink': metadata['fee_sink']
    }

@export
def get_supply():
    return {
        'total_supply': metadata['total_supply'],
        'public_supply': metadata['public_supply'],
        'privacy_supply': metadata['privacy_supply']
    }

@export
def get_tree_state():
    return {
        'generation': tree['generation'],
        'next_leaf': tree['next_leaf'],
        'capacity': capacity(),
        'subtree_height': tree['subtree_height'],
        'archive_height': tree['archive_height'],
        'active_root': tree['active_root'],
        'archive_root': tree['archive_root']
    }

@export
def get_root():
    return tree['active_root']

@export
def get_archive_root():
    return tree['archive_root']

@export
def get_archived_root(generation: int):
    return archived_roots[generation]

@export
def get_commitment(commitment: int):
    data = commitments[hex(commitment)]
    if data is None:
        return {'exists': False, 'generation': -1, 'leaf_index': -1}
    return {
        'exists': True,
        'generation': data['generation'],
        'leaf_index': data['leaf_index']
    }

@export
def get_leaf(generation: int, leaf_index: int):
    return leaves[generation, leaf_index]

@export
def is_spent(nullifier: int):
    return nullifiers[hex(nullifier)] is True

@export
def get_sink():
    return {'x': SINK_X, 'y': SINK_Y}

@export
def get_proof_shape(proof_type: str):
    shape = PROOF_SHAPES.get(proof_type)
    assert shape is not None, 'UnknownProofType: ' + str(proof_type)
    return shape

@export
def get_verifier(proof_type: str):
    return verifiers[proof_type]

@export
def balance_of(address: str):
    return balances[address]

@export
def allowance(owner: str, spender: str):
    return approvals[owner, spender]

# -----------------------------------------------------------------------------
# Configuration (operator)
# -----------------------------------------------------------------------------

def assert_operator():
    assert ctx.caller == metadata['operator'], 'Unauthorized: only operator can do this'

@export
def change_metadata(key: str, value: Any):
    assert_operator()
    assert key not in PROTECTED_METADATA, 'InvalidConfig: ' + key + ' cannot be changed directly'
    metadata[key] = value

@export
def change_operator(new_operator: str):
    assert_operator()
    assert len(new_operator) > 0, 'InvalidConfig: operator cannot be empty'
    metadata['operator'] = new_operator

@export
def set_verifier(proof_type: str, verifier_contract: str, circuit_id: str):
    assert_operator()
    assert proof_type in PROOF_SHAPES, 'UnknownProofType: ' + proof_type
    assert len(verifier_contract) > 0, 'InvalidConfig: verifier contract cannot be empty'
    verifiers[proof_type] = {'contract': verifier_contract, 'circuit': circuit_id}

@export
def set_burn_fee(fee_bps: int, fee_sink: str):
    assert_operator()
    assert 0 <= fee_bps <= FEE_DENOMINATOR, 'InvalidConfig: fee must be within 0..' + str(FEE_DENOMINATOR)
    assert len(fee_sink) > 0, 'InvalidConfig: fee sink cannot be empty'
    metadata['burn_fee_bps'] = fee_bps
    metadata['fee_sink'] = fee_sink

# -----------------------------------------------------------------------------
# Reentrancy guard
# -----------------------------------------------------------------------------

def enter():
    assert not guard['locked'], 'ReentrantCall: ledger is busy'
    guard['locked'] = True

def leave():
    guard['locked'] = False

def next_tx():
    tid = next_tx_id.get()
    next_tx_id.set(tid + 1)
    return tid

# -----------------------------------------------------------------------------
# Public balances
# -----------------------------------------------------------------------------

def assert_amount(amount):
    assert isinstance(amount, int) and not isinstance(amount, bool), 'InvalidAmount: amount must be an integer'
    assert amount > 0, 'InvalidAmount: amount must be positive'

def debit_public(account: str, amount: int):
    assert balances[account] >= amount, 'InsufficientBalance: ' + account + ' cannot cover ' + str(amount)
    balances[account] -= amount

def credit_public(account: str, amount: int):
    balances[account] += amount

@export
def issue_public(to: str, amount: int):
    enter()
    assert_operator()
    assert_amount(amount)

    credit_public(to, amount)
    metadata['public_supply'] += amount
    metadata['total_supply'] += amount

    IssueEvent({'to': to, 'amount': amount, 'tx_id': next_tx()})
    leave()

@export
def transfer(amount: int, to: str):
    enter()
    assert_amount(amount)

    debit_public(ctx.caller, amount)
    credit_public(to, amount)

    TransferEvent({'from': ctx.caller, 'to': to, 'amount': amount, 'tx_id': next_tx()})
    leave()

@export
def approve(amount: int, to: str):
    enter()
    assert isinstance(amount, int) and amount >= 0, 'InvalidAmount: allowance cannot be negative'
    approvals[ctx.caller, to] = amount

    ApproveEvent({'from': ctx.caller, 'to': to, 'amount': amount, 'tx_id': next_tx()})
    leave()

@export
def transfer_from(amount: int, to: str, main_account: str):
    enter()
    assert_amount(amount)
    assert approvals[main_account, ctx.caller] >= amount, 'InsufficientAllowance: ' + ctx.caller + ' may not move ' + str(amount)

    approvals[main_account, ctx.caller] -= amount
    debit_public(main_account, amount)
    credit_public(to, amount)

    TransferEvent({'from': main_account, 'to': to, 'amount': amount, 'tx_id': next_tx()})
    leave()

# -----------------------------------------------------------------------------
# Nullifier registry
# -----------------------------------------------------------------------------

def assert_unspent(batch: list):
    seen = []
    for n in batch:
        assert n not in seen, 'DoubleSpend: nullifier ' + hex(n) + ' repeated in one proof'
        assert not nullifiers[hex(n)], 'DoubleSpend: nullifier ' + hex(n) + ' already spent'
        seen.append(n)

def spend_nullifier(nullifier: int):
    key = hex(nullifier)
    assert not nullifiers[key], 'DoubleSpend: nullifier ' + key + ' already spent'
    nullifiers[key] = True
    NullifierSpentEvent({'nullifier': key})

# -----------------------------------------------------------------------------
# Commitment tree
# -----------------------------------------------------------------------------

def capacity():
    return 2 ** tree['subtree_height']

def archive_capacity():
    return 2 ** tree['archive_height']

def assert_new_commitments(batch: list):
    seen = []
    for c in batch:
        assert c not in seen, 'DuplicateCommitment: ' + hex(c) + ' repeated in one proof'
        assert commitments[hex(c)] is None, 'DuplicateCommitment: ' + hex(c) + ' already exists'
        seen.append(c)

def append_commitment(commitment: int):
    key = hex(commitment)
    assert commitments[key] is None, 'DuplicateCommitment: ' + key + ' already exists'

    generation = tree['generation']
    leaf_index = tree['next_leaf']
    assert leaf_index < capacity(), 'CapacityExceeded: generation ' + str(generation) + ' is full'

    leaves[generation, leaf_index] = commitment
    commitments[key] = {'generation': generation, 'leaf_index': leaf_index}
    tree['next_leaf'] = leaf_index + 1

    CommitmentAppendedEvent({
        'generation': generation,
        'commitment': key,
        'leaf_index': leaf_index,
        'block_num': block_num
    })
    return leaf_index

# -----------------------------------------------------------------------------
# Generations
# -----------------------------------------------------------------------------

def assert_rollover_ready(fields: dict):
    generation = tree['generation']
    assert tree['next_leaf'] == capacity(), 'InvalidStateForRollover: generation ' + str(generation) + ' is not full'
    assert fields['generation'] == generation, 'GenerationIndexMismatch: proof is for generation ' + str(fields['generation']) + ', current is ' + str(generation)
    assert generation < archive_capacity(), 'CapacityExceeded: archive is full'
    assert fields['old_archive_root'] == tree['archive_root'], 'StaleRoot: archive root changed'

def rollover(new_root: int, new_archive_root: int):
    generation = tree['generation']
    assert tree['next_leaf'] == capacity(), 'InvalidStateForRollover: generation ' + str(generation) + ' is not full'
    assert generation < archive_capacity(), 'CapacityExceeded: archive is full'

    finalized_root = tree['active_root']
    archived_roots[generation] = finalized_root

    tree['active_root'] = new_root
    tree['archive_root'] = new_archive_root
    tree['generation'] = generation + 1
    tree['next_leaf'] = 0

    GenerationFinalizedEvent({
        'generation': generation,
        'root': hex(finalized_root),
        'archive_root': hex(new_archive_root)
    })

# -----------------------------------------------------------------------------
# Proof gateway
# -----------------------------------------------------------------------------

def to_field(value):
    if isinstance(value, str):
        assert len(value) > 0 and value.isdecimal(), 'MalformedProof: signal is not a decimal string'
        assert len(value) <= len(str(FIELD)), 'MalformedProof: signal has too many digits'
        value = int(value)
    assert isinstance(value, int) and not isinstance(value, bool), 'MalformedProof: signal is not an integer'
    assert 0 <= value < FIELD, 'MalformedProof: signal outside the scalar field'
    return value

def decode_signals(proof_type: str, proof: dict, public_signals: list):
    shape = PROOF_SHAPES.get(proof_type)
    assert shape is not None, 'UnknownProofType: ' + str(proof_type)

    assert isinstance(proof, dict), 'MalformedProof: proof must be an object'
    for part in PROOF_KEYS:
        assert part in proof, 'MalformedProof: proof is missing ' + part

    assert isinstance(public_signals, list), 'MalformedProof: public signals must be a list'
    assert len(public_signals) == len(shape), 'MalformedProof: ' + proof_type + ' expects ' + str(len(shape)) + ' public signals, got ' + str(len(public_signals))

    fields = {}
    for i in range(len(shape)):
        fields[shape[i]] = to_field(public_signals[i])
    return fields

def verify_proof(proof_type: str, proof: dict, fields: dict):
    binding = verifiers[proof_type]
    assert binding is not None, 'UnknownProofType: no verifier bound for ' + proof_type

    verifier = importlib.import_module(binding['contract'])
    signals = [str(fields[name]) for name in PROOF_SHAPES[proof_type]]
    return verifier.verify(circuit_id=binding['circuit'], proof=proof, public_signals=signals) is True

# -----------------------------------------------------------------------------
# Conversions
# -----------------------------------------------------------------------------

def check_mint(proof_type: str, proof: dict, public_signals: list, amount: int):
    assert proof_type in MINT_TYPES, 'UnknownProofType: ' + str(proof_type) + ' cannot mint'
    fields = decode_signals(proof_type, proof, public_signals)

    if proof_type == 'mint':
        assert tree['next_leaf'] < capacity(), 'InvalidStateForRegularMint: generation ' + str(tree['generation']) + ' is full, use mint_rollover'
    else:
        assert_rollover_ready(fields)

    assert fields['old_root'] == tree['active_root'], 'StaleRoot: active root changed'
    assert fields['commitment'] != 0, 'InvalidCommitment: commitment cannot be zero'
    assert_new_commitments([fields['commitment']])

    assert_amount(amount)
    assert fields['amount'] == amount, 'AmountMismatch: proof mints ' + str(fields['amount']) + ', expected ' + str(amount)
    return fields

def commit_mint(proof_type: str, fields: dict):
    if proof_type == 'mint_rollover':
        rollover(fields['new_root'], fields['new_archive_root'])
    leaf_index = append_commitment(fields['commitment'])
    tree['active_root'] = fields['new_root']
    metadata['privacy_supply'] += fields['amount']
    return {'generation': tree['generation'], 'leaf_index': leaf_index}

def check_spend(proof_type: str, proof: dict, public_signals: list, allowed: list):
    assert proof_type in allowed, 'UnknownProofType: ' + str(proof_type) + ' is not allowed here'
    fields = decode_signals(proof_type, proof, public_signals)

    if proof_type == 'transfer_rollover':
        assert_rollover_ready(fields)
    else:
        assert tree['next_leaf'] < capacity(), 'InvalidStateForRegularTransfer: generation ' + str(tree['generation']) + ' is full, use transfer_rollover'
        if proof_type == 'transfer_finalized':
            assert fields['archive_root'] == tree['archive_root'], 'StaleRoot: archive root changed'

    assert fields['old_root'] == tree['active_root'], 'StaleRoot: active root changed'
    return fields

def spent_nullifiers(fields: dict):
    return [n for n in [fields['nullifier_a'], fields['nullifier_b']] if n != 0]

def output_commitments(fields: dict):
    return [c for c in [fields['commitment_a'], fields['commitment_b']] if c != 0]

def check_notes(proof_type: str, fields: dict):
    inputs = spent_nullifiers(fields)
    outputs = output_commitments(fields)
    assert len(inputs) > 0, 'NoInputs: proof spends no notes'

    if proof_type == 'transfer_rollover':
        free = capacity()
    else:
        free = capacity() - tree['next_leaf']
    assert len(outputs) <= free, 'CapacityExceeded: ' + str(len(outputs)) + ' outputs, ' + str(free) + ' leaves left'

    assert_new_commitments(outputs)
    assert_unspent(inputs)

def check_payloads(notes, fields: dict):
    if notes is None:
        return []
    outputs = len(output_commitments(fields))
    assert isinstance(notes, list) and len(notes) <= outputs, 'MalformedProof: ' + str(outputs) + ' outputs cannot carry more note payloads'
    for payload in notes:
        # joined with commas in events, so payloads stay hex
        assert isinstance(payload, str) and payload.lower().strip(HEX_DIGITS) == '', 'MalformedProof: note payloads must be hex strings'
    return notes

def commit_spend(proof_type: str, fields: dict):
    if proof_type == 'transfer_rollover':
        rollover(fields['new_root'], fields['new_archive_root'])

    for n in spent_nullifiers(fields):
        spend_nullifier(n)

    appended = []
    for c in output_commitments(fields):
        append_commitment(c)
        appended.append(hex(c))

    tree['active_root'] = fields['new_root']
    return appended

@export
def issue_private(proof_type: str,
                  proof: dict,
                  public_signals: list,
                  amount: int,
                  note: str = ''):
    enter()
    assert_operator()

    fields = check_mint(proof_type, proof, public_signals, amount)
    assert verify_proof(proof_type, proof, fields), 'ProofInvalid: ' + proof_type + ' proof rejected'

    position = commit_mint(proof_type, fields)
    metadata['total_supply'] += amount

    MintedEvent({
        'commitment': hex(fields['commitment']),
        'amount': amount,
        'note': note,
        'scan_tag': hex(fields['scan_tag']),
        'tx_id': next_tx()
    })
    leave()
    return position

@export
def convert_to_private(proof_type: str,
                       proof: dict,
                       public_signals: list,
                       amount: int,
                       note: str = ''):
    enter()

    fields = check_mint(proof_type, proof, public_signals, amount)
    assert balances[ctx.caller] >= amount, 'InsufficientBalance: ' + ctx.caller + ' cannot cover ' + str(amount)
    assert verify_proof(proof_type, proof, fields), 'ProofInvalid: ' + proof_type + ' proof rejected'

    position = commit_mint(proof_type, fields)
    debit_public(ctx.caller, amount)
    metadata['public_supply'] -= amount

    ConvertToPrivacyEvent({
        'from': ctx.caller,
        'commitment': hex(fields['commitment']),
        'amount': amount,
        'note': note,
        'scan_tag': hex(fields['scan_tag']),
        'tx_id': next_tx()
    })
    leave()
    return position

@export
def private_transfer(proof_type: str,
                     proof: dict,
                     public_signals: list,
                     notes: list = None,
                     ephemeral_key: str = ''):
    enter()

    fields = check_spend(proof_type, proof, public_signals, TRANSFER_TYPES)
    assert fields['conversion_amount'] == 0, 'UnexpectedConversion: transfer proof converts ' + str(fields['conversion_amount'])
    check_notes(proof_type, fields)
    notes = check_payloads(notes, fields)

    assert verify_proof(proof_type, proof, fields), 'ProofInvalid: ' + proof_type + ' proof rejected'

    appended = commit_spend(proof_type, fields)

    PrivateTransferEvent({
        'commitments': ','.join(appended),
        'notes': ','.join(notes),
        'ephemeral_key': ephemeral_key,
        'scan_tag': hex(fields['scan_tag']),
        'tx_id': next_tx()
    })
    leave()
    return appended

@export
def convert_to_public(proof_type: str,
                      proof: dict,
                      public_signals: list,
                      recipient: str,
                      notes: list = None,
                      ephemeral_key: str = ''):
    enter()
    assert len(recipient) > 0, 'InvalidConfig: recipient cannot be empty'

    fields = check_spend(proof_type, proof, public_signals, BURN_TYPES)
    amount = fields['conversion_amount']
    assert amount > 0, 'ZeroConversion: conversion proof converts nothing'
    assert fields['out_x'] == SINK_X and fields['out_y'] == SINK_Y, 'SinkCheckFailed: first output is not the sink point'
    check_notes(proof_type, fields)
    assert amount <= metadata['privacy_supply'], 'InsufficientPrivacySupply: cannot convert ' + str(amount)
    notes = check_payloads(notes, fields)

    assert verify_proof(proof_type, proof, fields), 'ProofInvalid: ' + proof_type + ' proof rejected'

    appended = commit_spend(proof_type, fields)
    metadata['privacy_supply'] -= amount
    metadata['public_supply'] += amount

    # Credits only after every private-side mutation
    fee = amount * metadata['burn_fee_bps'] // FEE_DENOMINATOR
    credit_public(recipient, amount - fee)
    if fee > 0:
        credit_public(metadata['fee_sink'], fee)

    ConvertToPublicEvent({
        'to': recipient,
        'amount': amount,
        'fee': fee,
        'commitments': ','.join(appended),
        'notes': ','.join(notes),
        'ephemeral_key': ephemeral_key,
        'scan_tag': hex(fields['scan_tag']),
        'tx_id': next_tx()
    })
    leave()
    return {'amount': amount - fee, 'fee': fee}

# -----------------------------------------------------------------------------
# Invariants / Utilities
# -----------------------------------------------------------------------------

@export
def verify_supply_invariant():
    # Sum of public balances must equal public_supply, and the two ledgers must add up
    public_total = 0
    count = 0
    for v in balances.all():
        if isinstance(v, int):
            public_total += v
            count += 1
    public_supply = metadata['public_supply']
    privacy_supply = metadata['privacy_supply']
    total_supply = metadata['total_supply']
    return {
        'ok': public_total == public_supply and total_supply == public_supply + privacy_supply,
        'balances': public_total,
        'public_supply': public_supply,
        'privacy_supply': privacy_supply,
        'total_supply': total_supply,
        'accounts': count
    }
