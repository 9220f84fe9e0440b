import unittest


def _rule(name: str, patterns, priority: int = 100, **kw):
    from ambient.contracts.v1 import Rule

    return Rule(name=name, file_patterns=list(patterns), priority=priority, prompt=f"review {{file_path}} for {name}", **kw)


class TestRuleMatcher(unittest.TestCase):
    def test_higher_priority_first(self) -> None:
        from ambient.kernel.rules import RuleSet, match_rules

        ruleset = RuleSet.from_rules(
            [
                _rule("Style", ["**/*.rs"], priority=50),
                _rule("Build Errors", ["src/**/*.rs"], priority=300),
            ]
        )
        self.assertEqual([r.name for r in match_rules("src/lib.rs", ruleset)], ["Build Errors", "Style"])

    def test_ties_keep_declaration_order(self) -> None:
        from ambient.kernel.rules import RuleSet, match_rules

        ruleset = RuleSet.from_rules(
            [
                _rule("b", ["*"], priority=10),
                _rule("a", ["*"], priority=10),
                _rule("c", ["*"], priority=20),
                _rule("d", ["*"], priority=10),
            ]
        )
        self.assertEqual([r.name for r in match_rules("x.py", ruleset)], ["c", "b", "a", "d"])

    def test_disabled_rules_never_match(self) -> None:
        from ambient.kernel.rules import RuleSet, match_rules

        ruleset = RuleSet.from_rules(
            [
                _rule("on", ["*.py"]),
                _rule("off", ["*.py"], priority=999, enabled=False),
            ]
        )
        self.assertEqual([r.name for r in match_rules("a.py", ruleset)], ["on"])

    def test_disabled_rule_may_have_empty_prompt(self) -> None:
        from ambient.contracts.v1 import Rule

        rule = Rule(name="draft", file_patterns=["*"], enabled=False)
        self.assertEqual(rule.prompt, "")
        with self.assertRaises(ValueError):
            Rule(name="broken", file_patterns=["*"], prompt="  ")

    def test_exclude_patterns_win(self) -> None:
        from ambient.kernel.rules import RuleSet, match_rules

        ruleset = RuleSet.from_rules([_rule("py", ["*.py"], exclude_patterns=["tests/**"])])
        self.assertEqual(len(match_rules("pkg/mod.py", ruleset)), 1)
        self.assertEqual(match_rules("tests/test_mod.py", ruleset), [])

    def test_no_match_is_empty(self) -> None:
        from ambient.kernel.rules import RuleSet, match_rules

        ruleset = RuleSet.from_rules([_rule("rust", ["*.rs"])])
        self.assertEqual(match_rules("README.md", ruleset), [])

    def test_with_rule_replaces_by_name(self) -> None:
        from ambient.kernel.rules import RuleSet

        ruleset = RuleSet.from_rules([_rule("a", ["*"], 10), _rule("b", ["*"], 10)])
        updated = ruleset.with_rule(_rule("a", ["*.py"], 10))
        self.assertEqual(updated.names(), ["a", "b"])
        self.assertEqual(updated.rules[0].file_patterns, ["*.py"])
        self.assertEqual(ruleset.with_rule(_rule("z", ["*"], 50)).names(), ["z", "a", "b"])

    def test_output_sorted_for_many_rule_sets(self) -> None:
        import random

        from ambient.kernel.rules import RuleSet, match_rules

        rnd = random.Random(7)
        for _ in range(50):
            rules = [
                _rule(f"r{i}", ["*"], priority=rnd.randint(0, 5), enabled=rnd.random() > 0.2)
                for i in range(rnd.randint(0, 12))
            ]
            out = match_rules("any/file.txt", RuleSet.from_rules(rules))
            self.assertTrue(all(r.enabled for r in out))
            keys = [(-r.priority, rules.index(r)) for r in out]
            self.assertEqual(keys, sorted(keys))


if __name__ == "__main__":
    unittest.main()
