"""Minimal ABI fragments for the contracts the chain adapter talks to."""


def _view(name, inputs, output_type):
    return {
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "name": name,
        "outputs": [{"name": "", "type": output_type}],
        "stateMutability": "view",
        "type": "function",
    }


def _write(name, inputs, outputs=None):
    return {
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "name": name,
        "outputs": [{"name": "", "type": kind} for kind in (outputs or [])],
        "stateMutability": "nonpayable",
        "type": "function",
    }


VOTER_ABI = [
    _view("epochVoteEnd", [("timestamp", "uint256")], "uint256"),
    _view("totalWeight", [], "uint256"),
    _view("length", [], "uint256"),
    _view("pools", [("index", "uint256")], "address"),
    _view("gauges", [("pool", "address")], "address"),
    _view("gaugeToFees", [("gauge", "address")], "address"),
    _view("gaugeToBribe", [("gauge", "address")], "address"),
    _view("weights", [("pool", "address")], "uint256"),
    _view("isAlive", [("gauge", "address")], "bool"),
    _write("vote", [("tokenId", "uint256"), ("_poolVote", "address[]"), ("_weights", "uint256[]")]),
    _write("claimBribes", [("_bribes", "address[]"), ("_tokens", "address[][]"), ("_tokenId", "uint256")]),
    _write("claimFees", [("_fees", "address[]"), ("_tokens", "address[][]"), ("_tokenId", "uint256")]),
]

MINTER_ABI = [
    _view("weekly", [], "uint256"),
]

DISTRIBUTOR_ABI = [
    _view("claimable", [("_tokenId", "uint256")], "uint256"),
    _write("claim", [("_tokenId", "uint256")], ["uint256"]),
]

REWARD_ABI = [
    _view("rewardsListLength", [], "uint256"),
    _view("rewards", [("index", "uint256")], "address"),
    _view("earned", [("token", "address"), ("tokenId", "uint256")], "uint256"),
    _view("tokenRewardsPerEpoch", [("token", "address"), ("epochStart", "uint256")], "uint256"),
]

ERC20_ABI = [
    _view("symbol", [], "string"),
    _view("decimals", [], "uint8"),
    _view("balanceOf", [("owner", "address")], "uint256"),
    _write("approve", [("spender", "address"), ("amount", "uint256")], ["bool"]),
]

PAIR_ABI = [
    _view("token0", [], "address"),
    _view("token1", [], "address"),
]

VE_ABI = [
    _view("balanceOfNFTAt", [("_tokenId", "uint256"), ("_t", "uint256")], "uint256"),
    _write("increaseAmount", [("_tokenId", "uint256"), ("_value", "uint256")]),
]
