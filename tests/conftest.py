import hashlib
import importlib.util
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONTRACT_PATH = PROJECT_ROOT / "con_zk_token.py"
HELPER_PATH = PROJECT_ROOT / "client_helper.py"
VERIFIER_PATH = Path(__file__).resolve().parent / "contracts" / "con_mock_verifier.py"
REENTRANT_PATH = Path(__file__).resolve().parent / "contracts" / "con_reentrant_verifier.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

SUBTREE_HEIGHT = 4
ARCHIVE_HEIGHT = 4
EMPTY_ROOT = 1000
EMPTY_ARCHIVE_ROOT = 2000

PROOF = {
    "pi_a": ["1", "2", "1"],
    "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
    "pi_c": ["7", "8", "1"],
}


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib", "decimal"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture(scope="session")
def helper_module():
    spec = importlib.util.spec_from_file_location("client_helper_tests", HELPER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def verifier(client):
    client.submit(VERIFIER_PATH.read_text(), name="con_zk_verifier", owner=None)
    return client.get_contract("con_zk_verifier")


@pytest.fixture
def reentrant_verifier(client):
    client.submit(
        REENTRANT_PATH.read_text(),
        name="con_reentrant_verifier",
        owner=None,
        constructor_args={"target": "con_zk_token"},
    )
    return client.get_contract("con_reentrant_verifier")


def submit_token(client, name, subtree_height, archive_height):
    client.submit(
        CONTRACT_PATH.read_text(),
        name=name,
        owner=None,
        constructor_args={
            "subtree_height": subtree_height,
            "archive_height": archive_height,
            "empty_root": EMPTY_ROOT,
            "empty_archive_root": EMPTY_ARCHIVE_ROOT,
            "verifier": "con_zk_verifier",
        },
    )
    return client.get_contract(name)


@pytest.fixture
def contract(client, verifier):
    return submit_token(client, "con_zk_token", SUBTREE_HEIGHT, ARCHIVE_HEIGHT)


@pytest.fixture
def small_contract(client, verifier):
    # capacity 2, archive of 2 generations
    return submit_token(client, "con_zk_token_small", 1, 1)


class FakeProver:
    """
    Produces call arguments the mock verifier accepts: fresh roots,
    commitments and nullifiers, laid out through the client helper.
    """

    def __init__(self, contract, helper):
        self.contract = contract
        self.helper = helper
        self.counter = 0
        self.block_num = 1

    def fresh(self):
        self.counter += 1
        return 10**6 + self.counter

    def state(self):
        return self.contract.get_tree_state()

    def call(self, method, signer="operator", **kwargs):
        self.block_num += 1
        fn = getattr(self.contract, method)
        return fn(signer=signer, environment={"block_num": self.block_num}, **kwargs)

    def call_full(self, method, signer="operator", **kwargs):
        # executor output: status_code, result, events, ...
        return self.call(method, signer=signer, return_full_output=True, **kwargs)

    def mint_args(self, amount, commitment):
        state = self.state()
        if self.helper.choose_mint_type(state) == "mint":
            return self.helper.build_mint(state, commitment, amount, self.fresh(), PROOF, scan_tag=7)
        return self.helper.build_mint_rollover(
            state, commitment, amount, self.fresh(), self.fresh(), PROOF, scan_tag=7
        )

    def issue(self, amount, commitment=None):
        commitment = commitment or self.fresh()
        self.call("issue_private", **self.mint_args(amount, commitment))
        return commitment

    def convert_to_private(self, account, amount, commitment=None):
        commitment = commitment or self.fresh()
        self.call("convert_to_private", signer=account, **self.mint_args(amount, commitment))
        return commitment

    def transfer_args(self, nullifiers, commitments, finalized_inputs=False):
        return self.helper.build_transfer(
            self.state(),
            nullifiers,
            commitments,
            self.fresh(),
            PROOF,
            scan_tag=9,
            finalized_inputs=finalized_inputs,
            new_archive_root=self.fresh(),
            notes=["aa" * 8 for c in commitments if c],
            ephemeral_key="bb" * 8,
        )

    def burn_args(self, nullifiers, amount, recipient, change=None, finalized_inputs=False):
        return self.helper.build_burn(
            self.state(),
            nullifiers,
            self.fresh(),
            change if change is not None else self.fresh(),
            amount,
            recipient,
            self.fresh(),
            PROOF,
            scan_tag=11,
            finalized_inputs=finalized_inputs,
            notes=["cc" * 8],
            ephemeral_key="dd" * 8,
        )

    def snapshot(self, nullifiers=()):
        return {
            "tree": self.state(),
            "supply": self.contract.get_supply(),
            "spent": [self.contract.is_spent(nullifier=n) for n in nullifiers],
        }


@pytest.fixture
def prover(contract, helper_module):
    return FakeProver(contract, helper_module)


@pytest.fixture
def small_prover(small_contract, helper_module):
    return FakeProver(small_contract, helper_module)
