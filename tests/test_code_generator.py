import string

from pos_pairing.services.code_generator import CODE_ALPHABET, CodeGenerator, mask_code


def test_alphabet_is_uppercase_alphanumeric():
    assert set(CODE_ALPHABET) == set(string.ascii_uppercase + string.digits)
    assert len(CODE_ALPHABET) == 36


def test_codes_are_twelve_symbols_from_alphabet():
    generator = CodeGenerator()
    for _ in range(500):
        code = generator.new_code()
        assert len(code) == 12
        assert all(ch in CODE_ALPHABET for ch in code)
        assert generator.is_well_formed(code)


def test_codes_do_not_repeat():
    generator = CodeGenerator()
    codes = {generator.new_code() for _ in range(2000)}
    assert len(codes) == 2000


def test_draws_from_injected_rng(mocker):
    rng = mocker.Mock()
    rng.choice.return_value = "Q"
    generator = CodeGenerator(rng=rng)

    assert generator.new_code() == "Q" * 12
    assert rng.choice.call_count == 12


def test_well_formed_rejects_bad_input():
    generator = CodeGenerator()
    assert not generator.is_well_formed("ABC")
    assert not generator.is_well_formed("abcdefghijkl")
    assert not generator.is_well_formed("ABCDEFGHIJK-")


def test_mask_code_hides_tail():
    assert mask_code("ABCD12345678") == "ABCD********"
    assert mask_code(None) == "<none>"
