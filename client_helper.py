import hashlib
import logging

logger = logging.getLogger(__name__)

# ---- Chain-constant parameters & helpers (mirror contract) ----

FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FEE_DENOMINATOR = 10000

def sha3_hex(s: str) -> str:
    # Matches Xian env semantics for non-hex input
    return hashlib.sha3_256(s.encode("utf-8")).hexdigest()

def field_hash(tag: str) -> int:
    return int(sha3_hex("XZKT:" + tag), 16) % FIELD

SINK_X = field_hash("sink:x")
SINK_Y = field_hash("sink:y")

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
    ],
}

MAX_INPUTS = 2
MAX_OUTPUTS = 2

HEX_DIGITS = '0123456789abcdef'

# ---- Error taxonomy ----------------------------------------------------------

class LedgerError(Exception):
    """A rejection from the ledger, tagged with the contract's reason code."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class ValidationError(LedgerError):
    """Bad input: unknown proof type, malformed encoding, wrong amount."""


class StateMismatchError(LedgerError):
    """Proof was built against stale state; refresh and re-prove."""


class DoubleSpendError(LedgerError):
    pass


class CapacityError(LedgerError):
    pass


class ProofInvalidError(LedgerError):
    pass


class SecurityInvariantError(LedgerError):
    """Treated as a potential attack, never tolerated."""


REASONS = {
    'UnknownProofType': ValidationError,
    'MalformedProof': ValidationError,
    'AmountMismatch': ValidationError,
    'InvalidAmount': ValidationError,
    'InvalidCommitment': ValidationError,
    'NoInputs': ValidationError,
    'UnexpectedConversion': ValidationError,
    'ZeroConversion': ValidationError,
    'InsufficientBalance': ValidationError,
    'InsufficientAllowance': ValidationError,
    'Unauthorized': ValidationError,
    'InvalidConfig': ValidationError,
    'StaleRoot': StateMismatchError,
    'GenerationIndexMismatch': StateMismatchError,
    'DuplicateCommitment': StateMismatchError,
    'DoubleSpend': DoubleSpendError,
    'CapacityExceeded': CapacityError,
    'InvalidStateForRegularMint': CapacityError,
    'InvalidStateForRegularTransfer': CapacityError,
    'InvalidStateForRollover': CapacityError,
    'ProofInvalid': ProofInvalidError,
    'SinkCheckFailed': SecurityInvariantError,
    'InsufficientPrivacySupply': SecurityInvariantError,
    'ReentrantCall': SecurityInvariantError,
}

def reason_of(exc: BaseException) -> str:
    """Reason code at the front of a contract assertion message, or ''."""
    message = str(exc.args[0]) if exc.args else ""
    reason, sep, _ = message.partition(":")
    return reason.strip() if sep else message.strip()

def classify(exc: BaseException):
    """
    Map a contract rejection onto the typed error hierarchy.
    Returns None when the message carries no known reason code.
    """
    reason = reason_of(exc)
    error_class = REASONS.get(reason)
    if error_class is None:
        return None
    detail = str(exc.args[0]).partition(":")[2].strip()
    return error_class(reason, detail)

def call_ledger(fn, **kwargs):
    """
    Call a contract method and re-raise rejections as LedgerError subclasses.
    Unknown assertion messages propagate unchanged.
    """
    try:
        return fn(**kwargs)
    except AssertionError as e:
        error = classify(e)
        if error is None:
            raise
        logger.warning("ledger rejected call: %s", error)
        raise error from e

# ---- Public signal encoding --------------------------------------------------

def to_field(value) -> int:
    """Public signals are ints or decimal strings, as the contract accepts them."""
    if isinstance(value, bool):
        raise ValidationError("MalformedProof", "booleans are not field elements")
    if isinstance(value, str):
        if not value.isdecimal() or len(value) > len(str(FIELD)):
            raise ValidationError("MalformedProof", f"{value[:80]!r} is not a decimal field element")
        value = int(value)
    if not isinstance(value, int) or not 0 <= value < FIELD:
        raise ValidationError("MalformedProof", f"{value!r} is not a field element")
    return value

def event_field(value) -> int:
    # events carry commitments and roots as hex()
    if isinstance(value, str) and value.startswith("0x"):
        try:
            value = int(value, 16)
        except ValueError as err:
            raise ValidationError("MalformedProof", f"{value!r} is not a hex number") from err
    return to_field(value)

def check_payloads(notes, outputs: int) -> list:
    notes = list(notes or [])
    if len(notes) > outputs:
        raise ValidationError("MalformedProof", f"{outputs} outputs cannot carry {len(notes)} note payloads")
    for payload in notes:
        if not isinstance(payload, str) or payload.lower().strip(HEX_DIGITS):
            raise ValidationError("MalformedProof", "note payloads must be hex strings")
    return notes

def shape_of(proof_type: str) -> list:
    shape = PROOF_SHAPES.get(proof_type)
    if shape is None:
        raise ValidationError("UnknownProofType", str(proof_type))
    return shape

def encode_public_signals(proof_type: str, **fields) -> list:
    """
    Lay out named fields in the positional order of the proof shape.
    Signals are returned as decimal strings, the form provers emit.
    """
    shape = shape_of(proof_type)
    missing = [name for name in shape if name not in fields]
    if missing:
        raise ValidationError("MalformedProof", f"{proof_type} is missing {', '.join(missing)}")
    unknown = sorted(set(fields) - set(shape))
    if unknown:
        raise ValidationError("MalformedProof", f"{proof_type} has no {', '.join(unknown)}")
    return [str(to_field(fields[name])) for name in shape]

def decode_public_signals(proof_type: str, public_signals: list) -> dict:
    shape = shape_of(proof_type)
    if len(public_signals) != len(shape):
        raise ValidationError(
            "MalformedProof",
            f"{proof_type} expects {len(shape)} public signals, got {len(public_signals)}",
        )
    return {name: to_field(value) for name, value in zip(shape, public_signals)}

def pad(values, size: int, label: str) -> list:
    values = [to_field(v) for v in (values or [])]
    if len(values) > size:
        raise ValidationError("MalformedProof", f"at most {size} {label}, got {len(values)}")
    return values + [0] * (size - len(values))

def split_fee(amount: int, fee_bps: int):
    """Returns (net, fee) exactly as the contract splits a conversion to public."""
    fee = amount * fee_bps // FEE_DENOMINATOR
    return amount - fee, fee

# ---- Proof type selection ----------------------------------------------------

def free_leaves(tree_state: dict) -> int:
    return tree_state['capacity'] - tree_state['next_leaf']

def choose_mint_type(tree_state: dict) -> str:
    return 'mint_rollover' if free_leaves(tree_state) == 0 else 'mint'

def choose_transfer_type(tree_state: dict, outputs: int, finalized_inputs: bool = False) -> str:
    """
    Pick the transfer shape for the current generation.
    A full generation forces a rollover; a partly full one must still fit
    every output, otherwise the caller has to split the transfer.
    """
    free = free_leaves(tree_state)
    if free == 0:
        return 'transfer_rollover'
    if outputs > free:
        raise CapacityError("CapacityExceeded", f"{outputs} outputs, {free} leaves left")
    return 'transfer_finalized' if finalized_inputs else 'transfer'

# ---- High-level builders -----------------------------------------------------

def build_mint(tree_state: dict,
               commitment: int,
               amount: int,
               new_root: int,
               proof: dict,
               scan_tag: int = 0):
    """
    Returns args for contract.issue_private() / contract.convert_to_private():
        (proof_type, proof, public_signals, amount)
    """
    if choose_mint_type(tree_state) != 'mint':
        raise CapacityError("InvalidStateForRegularMint", "generation is full, use build_mint_rollover")
    signals = encode_public_signals(
        'mint',
        old_root=tree_state['active_root'],
        new_root=new_root,
        commitment=commitment,
        amount=amount,
        scan_tag=scan_tag,
    )
    return {
        'proof_type': 'mint',
        'proof': proof,
        'public_signals': signals,
        'amount': amount
    }

def build_mint_rollover(tree_state: dict,
                        commitment: int,
                        amount: int,
                        new_root: int,
                        new_archive_root: int,
                        proof: dict,
                        scan_tag: int = 0):
    """
    Returns args for a minting call that closes the full generation and
    places `commitment` at leaf 0 of the next one.
    """
    if choose_mint_type(tree_state) != 'mint_rollover':
        raise CapacityError("InvalidStateForRollover", "generation still has free leaves")
    signals = encode_public_signals(
        'mint_rollover',
        old_root=tree_state['active_root'],
        old_archive_root=tree_state['archive_root'],
        new_root=new_root,
        new_archive_root=new_archive_root,
        commitment=commitment,
        amount=amount,
        generation=tree_state['generation'],
        scan_tag=scan_tag,
    )
    return {
        'proof_type': 'mint_rollover',
        'proof': proof,
        'public_signals': signals,
        'amount': amount
    }

def spend_fields(tree_state: dict,
                 proof_type: str,
                 new_root: int,
                 nullifiers,
                 commitments,
                 conversion_amount: int,
                 out_x: int,
                 out_y: int,
                 scan_tag: int,
                 new_archive_root: int = None) -> dict:
    nullifier_a, nullifier_b = pad(nullifiers, MAX_INPUTS, "nullifiers")
    commitment_a, commitment_b = pad(commitments, MAX_OUTPUTS, "commitments")
    fields = {
        'old_root': tree_state['active_root'],
        'new_root': new_root,
        'nullifier_a': nullifier_a,
        'nullifier_b': nullifier_b,
        'commitment_a': commitment_a,
        'commitment_b': commitment_b,
        'conversion_amount': conversion_amount,
        'out_x': out_x,
        'out_y': out_y,
        'scan_tag': scan_tag,
    }
    if proof_type == 'transfer_finalized':
        fields['archive_root'] = tree_state['archive_root']
    elif proof_type == 'transfer_rollover':
        if new_archive_root is None:
            raise ValidationError("MalformedProof", "transfer_rollover needs new_archive_root")
        fields['old_archive_root'] = tree_state['archive_root']
        fields['new_archive_root'] = new_archive_root
        fields['generation'] = tree_state['generation']
    return fields

def build_transfer(tree_state: dict,
                   nullifiers,
                   commitments,
                   new_root: int,
                   proof: dict,
                   out_x: int = 0,
                   out_y: int = 0,
                   scan_tag: int = 0,
                   finalized_inputs: bool = False,
                   new_archive_root: int = None,
                   notes: list = None,
                   ephemeral_key: str = ''):
    """
    Returns args for contract.private_transfer():
        (proof_type, proof, public_signals, notes, ephemeral_key)
    """
    outputs = len([c for c in (commitments or []) if c])
    proof_type = choose_transfer_type(tree_state, outputs, finalized_inputs)
    fields = spend_fields(tree_state, proof_type, new_root, nullifiers, commitments,
                          0, out_x, out_y, scan_tag, new_archive_root)
    return {
        'proof_type': proof_type,
        'proof': proof,
        'public_signals': encode_public_signals(proof_type, **fields),
        'notes': check_payloads(notes, outputs),
        'ephemeral_key': ephemeral_key
    }

def build_burn(tree_state: dict,
               nullifiers,
               sink_commitment: int,
               change_commitment: int,
               amount: int,
               recipient: str,
               new_root: int,
               proof: dict,
               scan_tag: int = 0,
               finalized_inputs: bool = False,
               notes: list = None,
               ephemeral_key: str = ''):
    """
    Returns args for contract.convert_to_public():
        (proof_type, proof, public_signals, recipient, notes, ephemeral_key)
    The first output always goes to the sink point; the second carries change.
    """
    if amount <= 0:
        raise ValidationError("ZeroConversion", "conversion amount must be positive")
    if free_leaves(tree_state) == 0:
        raise CapacityError("InvalidStateForRegularTransfer", "generation is full, roll it over first")
    commitments = [sink_commitment, change_commitment]
    outputs = len([c for c in commitments if c])
    proof_type = choose_transfer_type(tree_state, outputs, finalized_inputs)
    fields = spend_fields(tree_state, proof_type, new_root, nullifiers, commitments,
                          amount, SINK_X, SINK_Y, scan_tag)
    return {
        'proof_type': proof_type,
        'proof': proof,
        'public_signals': encode_public_signals(proof_type, **fields),
        'recipient': recipient,
        'notes': check_payloads(notes, outputs),
        'ephemeral_key': ephemeral_key
    }

# ---- Convenience: wallet-side tree mirror ------------------------------------

class GenerationTracker:
    """
    Rebuilds leaf positions and finalized generations from the contract's
    CommitmentAppended / GenerationFinalized events. Accepts either the raw
    event record ({'event', 'data_indexed', 'data'}) or a flat dict with an
    'event' key.
    """
    def __init__(self, capacity: int):
        self.capacity = capacity
        self.generation = 0
        self.leaves = {0: []}
        self.finalized = {}

    @property
    def next_leaf(self) -> int:
        return len(self.leaves[self.generation])

    def apply(self, event: dict):
        name = event.get('event')
        data = dict(event.get('data_indexed') or {})
        data.update(event.get('data') or {})
        data.update({k: v for k, v in event.items() if k not in ('event', 'data', 'data_indexed')})
        if name == 'CommitmentAppended':
            self.apply_appended(data)
        elif name == 'GenerationFinalized':
            self.apply_finalized(data)

    def apply_appended(self, data: dict):
        generation = int(data['generation'])
        leaf_index = int(data['leaf_index'])
        if generation != self.generation:
            raise StateMismatchError(
                "GenerationIndexMismatch",
                f"leaf for generation {generation} while tracking {self.generation}",
            )
        if leaf_index != self.next_leaf:
            raise StateMismatchError("StaleRoot", f"expected leaf {self.next_leaf}, got {leaf_index}")
        if leaf_index >= self.capacity:
            raise CapacityError("CapacityExceeded", f"generation {generation} is full")
        self.leaves[generation].append(event_field(data['commitment']))

    def apply_finalized(self, data: dict):
        generation = int(data['generation'])
        if generation != self.generation:
            raise StateMismatchError(
                "GenerationIndexMismatch",
                f"finalized generation {generation} while tracking {self.generation}",
            )
        self.finalized[generation] = event_field(data['root'])
        self.generation = generation + 1
        self.leaves[self.generation] = []

    def position_of(self, commitment: int):
        commitment = event_field(commitment)
        for generation, leaves in self.leaves.items():
            if commitment in leaves:
                return generation, leaves.index(commitment)
        return None

    def is_finalized(self, generation: int) -> bool:
        return generation in self.finalized
