"""
Tests for pattern_scanner.py

Each rule contributes at most one finding; comments never trigger rules;
structural observations are key features, not findings.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from pattern_scanner import PatternScanner, detect_contract_type, strip_comments
from schemas import PATTERN_SCANNER_SOURCE, Severity
from security_scorer import score

TX_ORIGIN_CONTRACT = """pragma solidity ^0.8.0;

contract Wallet {
    address public owner;

    constructor() {
        owner = msg.sender;
    }

    function transferTo(address payable dest, uint256 amount) public {
        require(tx.origin == owner);
        dest.transfer(amount);
    }
}
"""

REENTRANT_CONTRACT = """pragma solidity ^0.8.0;

contract Vault {
    mapping(address => uint256) public balances;

    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
    }
}
"""


class TestPatternScanner:
    def setup_method(self):
        self.scanner = PatternScanner()

    def test_tx_origin_only_contract(self):
        result = self.scanner.scan(TX_ORIGIN_CONTRACT)
        assert result.source == PATTERN_SCANNER_SOURCE
        assert result.security_score is None
        assert len(result.findings) == 1
        finding = result.findings[0]
        assert finding.title == "Use of tx.origin"
        assert finding.severity is Severity.MEDIUM
        assert finding.code_reference == "line 11"
        assert score(result.findings)[0] == 95

    def test_reentrancy_detected_checked_call_not_flagged(self):
        result = self.scanner.scan(REENTRANT_CONTRACT)
        assert [f.title for f in result.findings] == ["Potential Reentrancy"]
        assert result.findings[0].severity is Severity.HIGH
        assert result.findings[0].code_reference == "line 8"

    def test_unchecked_send(self):
        source = "pragma solidity ^0.8.0;\ncontract P {\n  function pay() public {\n    payable(msg.sender).send(1);\n  }\n}\n"
        titles = [f.title for f in self.scanner.scan(source).findings]
        assert titles == ["Unchecked Low-Level Call"]

    def test_unchecked_arithmetic_only_before_08(self):
        old = "pragma solidity ^0.6.0;\ncontract C {\n  uint total;\n  function add(uint x) public { total += x; }\n}\n"
        new = old.replace("^0.6.0", "^0.8.4")
        assert [f.title for f in self.scanner.scan(old).findings] == ["Unchecked Arithmetic"]
        assert self.scanner.scan(new).findings == ()

    def test_safemath_suppresses_arithmetic_rule(self):
        source = (
            "pragma solidity ^0.6.0;\nimport './SafeMath.sol';\ncontract C {\n"
            "  using SafeMath for uint;\n  uint total;\n  function add(uint x) public { total += x; }\n}\n"
        )
        assert self.scanner.scan(source).findings == ()

    def test_comments_do_not_trigger_rules(self):
        source = "pragma solidity ^0.8.0;\n// never use tx.origin\n/* selfdestruct(owner); */\ncontract C {}\n"
        assert self.scanner.scan(source).findings == ()

    def test_one_finding_per_rule_with_line_list(self):
        source = (
            "pragma solidity ^0.8.0;\ncontract T {\n"
            "  function a() public view returns (uint) { return block.timestamp; }\n"
            "  function b() public view returns (uint) { return block.timestamp + 1; }\n}\n"
        )
        findings = self.scanner.scan(source).findings
        assert len(findings) == 1
        assert findings[0].severity is Severity.LOW
        assert findings[0].code_reference == "lines 3, 4"

    def test_line_references_are_capped(self):
        body = "".join(f"  uint v{i} = block.timestamp;\n" for i in range(8))
        finding = PatternScanner(max_line_refs=3).scan("contract T {\n" + body + "}\n").findings[0]
        assert finding.code_reference == "lines 2, 3, 4 (+5 more)"

    def test_key_features(self):
        source = "import '@openzeppelin/contracts/access/Ownable.sol';\ncontract C is Ownable {\n  function f() public onlyOwner {}\n}\n"
        features = self.scanner.scan(source).key_features
        assert "Contract has owner functionality" in features
        assert "Contract implements access control mechanisms" in features
        assert "Contract uses OpenZeppelin libraries" in features

    @pytest.mark.parametrize("source", [None, "", "   "])
    def test_empty_source(self, source):
        result = self.scanner.scan(source)
        assert result.succeeded
        assert result.findings == ()


class TestHelpers:
    def test_strip_comments_keeps_line_numbers(self):
        source = "a\n/* one\ntwo */\nb // c\n"
        stripped = strip_comments(source)
        assert stripped.count("\n") == source.count("\n")
        assert "two" not in stripped
        assert stripped.splitlines()[3] == "b "

    @pytest.mark.parametrize(
        "source,expected",
        [
            ("contract Token is ERC20 {}", "ERC20 Token"),
            ("contract Art is ERC721 {}", "ERC721 NFT"),
            ("contract Pool { function swap() {} address pair; }", "DEX / AMM"),
            ("contract Farm { function stake() {} }", "Staking / Yield"),
            ("contract Plain {}", "Custom Contract"),
        ],
    )
    def test_detect_contract_type(self, source, expected):
        assert detect_contract_type(source) == expected
