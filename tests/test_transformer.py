"""
End-to-end tests for the transform pipeline.

Run with: pytest tests/test_transformer.py -v
"""

import re
from concurrent.futures import ThreadPoolExecutor

import pytest
from lxml import etree, html

from xform_transformer import (
    DocumentRole,
    MalformedDocument,
    MissingModelRoot,
    Survey,
    UnsupportedPreprocessing,
    get_backend,
    transform,
    transform_xform,
)
from xform_transformer.config import StylesheetConfig, TransformerConfig, set_config
from xform_transformer.transform import reload_sheets

ORX = "http://openrosa.org/xforms"
XFORMS_NS = "http://www.w3.org/2002/xforms"


def parse_form(result):
    return html.fragment_fromstring(result.form)


def parse_model(result):
    return etree.fromstring(result.model)


class TestOutputShape:
    """Basic shape of form and model output."""

    def test_form_root(self, dom, basic_xform):
        """Form output is a single form element with the instance id."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        assert form.tag == "form"
        assert form.get("id") == "basic"
        assert form.get("class").split()[:2] == ["or", "clearfix"]
        assert form.xpath("string(//h3[@id='form-title'])") == "Basic Survey"

    def test_model_root(self, dom, basic_xform):
        """Model output starts with a model element without a default namespace."""
        result = transform_xform(basic_xform, backend=dom)
        assert result.model.startswith("<model")
        assert 'xmlns="http://www.w3.org/2002/xforms"' not in result.model.split(">", 1)[0]
        model = parse_model(result)
        assert model.tag == "model"
        assert model.find("instance/data").get("id") == "basic"

    @pytest.mark.parametrize("form_name", ["basic.xml", "repeat.xml", "itemsets.xml", "minimal.xml"])
    def test_no_generated_prefixes(self, dom, forms_dir, form_name):
        """Model elements keep their unprefixed names; the form gets no XForms declaration."""
        xform = (forms_dir / form_name).read_text(encoding="utf-8")
        result = transform_xform(xform, backend=dom)
        assert result.model.startswith("<model")
        assert re.search(r"</?ns\d+:|xmlns:ns\d+=", result.model) is None
        assert result.model.count("<instance") >= 1
        assert XFORMS_NS not in result.form.split(">", 1)[0]

    def test_question_attributes(self, dom, basic_xform):
        """Bind properties end up as data attributes on the controls."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        name = form.xpath("//input[@name='/data/name']")[0]
        assert name.get("data-type-xml") == "string"
        assert name.get("data-required") == "true()"

        age = form.xpath("//input[@name='/data/age']")[0]
        assert age.get("type") == "number"
        assert age.get("data-constraint") == ". > 0"

        photo = form.xpath("//input[@name='/data/photo']")[0]
        assert photo.get("type") == "file"
        assert photo.get("accept") == "image/*"

    def test_calculations_outside_body(self, dom, basic_xform):
        """Calculated nodes without a control get hidden inputs."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        hidden = form.xpath("//fieldset[@id='or-calculated-items']//input[@name='/data/total']")
        assert len(hidden) == 1
        assert hidden[0].get("data-calculate") == "/data/age * 2"

    def test_to_dict(self, basic_xform):
        """Wire representation uses camelCase keys."""
        data = transform_xform(basic_xform).to_dict()
        assert set(data) == {"form", "model", "languageMap", "transformerVersion"}
        assert len(data["transformerVersion"]) == 32


class TestBackends:
    """Both backends produce identical output."""

    @pytest.mark.parametrize("fixture", [
        "basic_xform", "repeat_xform", "itemsets_xform", "minimal_xform",
    ])
    def test_identical_output(self, request, fixture):
        """Native and host backends agree byte for byte."""
        xform = request.getfixturevalue(fixture)
        options = {"media": {"form_logo.png": "/media/logo.png"}, "theme": "grid"}
        native = transform_xform(xform, backend=get_backend("native"), **options)
        host = transform_xform(xform, backend=get_backend("host"), **options)
        assert native.form == host.form
        assert native.model == host.model
        assert native.language_map == host.language_map

    def test_configured_backend(self, basic_xform):
        """Without an explicit backend the configured one is used."""
        set_config(TransformerConfig(backend="host"))
        with pytest.raises(UnsupportedPreprocessing):
            transform(Survey(xform=basic_xform, preprocess=lambda tree: tree))


class TestIdempotence:
    """Serialize, reparse and reserialize gives the same text."""

    def test_model_roundtrip(self, dom, basic_xform):
        """Model output survives an XML round trip unchanged."""
        model = transform_xform(basic_xform, backend=dom).model
        assert etree.tostring(etree.fromstring(model), encoding="unicode") == model

    def test_form_roundtrip(self, dom, minimal_xform):
        """Form output survives an HTML round trip unchanged."""
        form = transform_xform(minimal_xform, backend=dom).form
        reparsed = html.tostring(html.fragment_fromstring(form), encoding="unicode")
        assert reparsed == form

    def test_repeated_transform(self, dom, basic_xform):
        """Transforming the same XForm twice gives the same result."""
        first = transform_xform(basic_xform, backend=dom, media={"x.png": "/x.png"})
        second = transform_xform(basic_xform, backend=dom, media={"x.png": "/x.png"})
        assert first.form == second.form
        assert first.model == second.model


class TestBinaryDefaults:
    """Default values of binary questions."""

    def test_media_default(self, dom, basic_xform):
        """A jr:// default gets the mapped src and keeps its escaped URL as text."""
        xform = basic_xform.replace("jr://images/default photo.jpg", "jr://images/x.jpg")
        result = transform_xform(xform, backend=dom, media={"x.jpg": "/media/x.jpg"})
        photo = parse_model(result).find("instance/data/photo")
        assert photo.get("src") == "/media/x.jpg"
        assert photo.text == "jr://images/x.jpg"

    def test_escaped_default(self, dom, basic_xform):
        """File names with spaces are escaped on both sides of the map."""
        result = transform_xform(
            basic_xform, backend=dom, media={"default photo.jpg": "/media/default photo.jpg"}
        )
        photo = parse_model(result).find("instance/data/photo")
        assert photo.get("src") == "/media/default%20photo.jpg"
        assert photo.text == "jr://images/default%20photo.jpg"

    def test_unmapped_default(self, dom, basic_xform):
        """Without a mapping src falls back to the escaped URL."""
        photo = parse_model(transform_xform(basic_xform, backend=dom)).find("instance/data/photo")
        assert photo.get("src") == "jr://images/default%20photo.jpg"

    def test_plain_text_default(self, dom, basic_xform):
        """Non-URL text is escaped into src and text alike."""
        xform = basic_xform.replace("jr://images/default photo.jpg", "my photo.jpg")
        photo = parse_model(transform_xform(xform, backend=dom)).find("instance/data/photo")
        assert photo.get("src") == "my%20photo.jpg"
        assert photo.text == "my%20photo.jpg"


class TestTheme:
    """Theme injection."""

    def test_replaces_theme_class(self, dom, basic_xform):
        """An existing theme class is swapped in place."""
        form = parse_form(transform_xform(basic_xform, backend=dom, theme="grid"))
        assert form.get("class") == "or clearfix pages theme-grid"

    def test_appends_theme_class(self, dom, minimal_xform):
        """Forms without a theme class get one appended."""
        form = parse_form(transform_xform(minimal_xform, backend=dom, theme="grid"))
        assert form.get("class") == "or clearfix theme-grid"

    def test_no_theme(self, dom, basic_xform):
        """Without a theme the form keeps its own class."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        assert form.get("class") == "or clearfix pages theme-kobo"


class TestItemsets:
    """Itemset labels come from generated templates."""

    def test_labels_from_secondary_instances(self, dom, itemsets_xform):
        """Each itemset lists the items of its own instance."""
        form = parse_form(transform_xform(itemsets_xform, backend=dom))
        fruit = form.xpath("//input[@data-name='/data/fruit']/ancestor::div[1]"
                           "//span[@class='itemset-labels']/span/@data-option-value")
        color = form.xpath("//input[@data-name='/data/color']/ancestor::div[1]"
                           "//span[@class='itemset-labels']/span/@data-option-value")
        assert list(fruit) == ["apple", "pear"]
        assert list(color) == ["red"]

    def test_label_text(self, dom, itemsets_xform):
        """Label text is read through the label reference."""
        form = parse_form(transform_xform(itemsets_xform, backend=dom))
        labels = form.xpath("//span[@data-option-value='pear']")
        assert [label.text for label in labels] == ["Pear"]

    def test_template_keeps_nodeset(self, dom, itemsets_xform):
        """The template label keeps the original nodeset for the form engine."""
        form = parse_form(transform_xform(itemsets_xform, backend=dom))
        paths = form.xpath("//label[@class='itemset-template']/@data-items-path")
        assert paths[0].startswith("randomize(")
        assert paths[1] == "instance('colors')/root/item"


class TestActions:
    """setvalue and setgeopoint handling."""

    def test_model_setvalue_merged(self, dom, repeat_xform):
        """A model-level setvalue is merged into the visible control."""
        form = parse_form(transform_xform(repeat_xform, backend=dom))
        age = form.xpath("//input[@name='/data/age']")
        assert len(age) == 1
        assert age[0].get("type") == "number"
        assert age[0].get("data-setvalue") == "18"
        assert age[0].get("data-event") == "odk-instance-first-load"
        assert form.xpath("//label[contains(@class, 'setvalue')]") == []

    def test_repeat_setgeopoint_merged(self, dom, repeat_xform):
        """A repeat-level setgeopoint is merged into the control inside the repeat."""
        form = parse_form(transform_xform(repeat_xform, backend=dom))
        location = form.xpath("//section[contains(@class, 'or-repeat')]"
                              "//input[@name='/data/person/location']")
        assert len(location) == 1
        assert location[0].get("data-setgeopoint") == ""
        assert location[0].get("data-event") == "odk-new-repeat"
        assert form.xpath("//label[contains(@class, 'setgeopoint')]") == []

    def test_nested_setvalue_unwrapped(self, dom, repeat_xform):
        """An action nested in a question loses its label wrapper."""
        form = parse_form(transform_xform(repeat_xform, backend=dom))
        hidden = form.xpath("//label[contains(@class, 'question')]"
                            "/input[@type='hidden' and @name='/data/person/age']")
        assert len(hidden) == 1
        assert hidden[0].get("data-setvalue") == "1"


class TestAppearances:
    """Appearance tokens become classes."""

    def test_question_appearances(self, dom, basic_xform):
        """Tokens expand in place, legacy ones with their modern classes."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        question = form.xpath("//input[@name='/data/age']/..")[0]
        assert question.get("class") == (
            "question non-select or-appearance-w2 "
            "or-appearance-horizontal or-appearance-columns"
        )
        assert question.get("data-appearances") is None

    def test_group_appearance(self, dom, repeat_xform):
        form = parse_form(transform_xform(repeat_xform, backend=dom))
        group = form.xpath("//section[@name='/data/person']")[0]
        assert group.get("class") == "or-group or-appearance-field-list"

    def test_compact_n(self, dom, itemsets_xform):
        form = parse_form(transform_xform(itemsets_xform, backend=dom))
        select = form.xpath("//fieldset[.//input[@name='/data/color']]")[0]
        assert select.get("class").split() == [
            "question", "simple-select", "or-appearance-compact-2",
            "or-appearance-columns-2", "or-appearance-no-buttons",
        ]

    def test_no_placeholders_left(self, dom, itemsets_xform):
        result = transform_xform(itemsets_xform, backend=dom)
        assert "__appearances__" not in result.form


class TestMedia:
    """Media source rewriting and the form logo."""

    def test_itext_image(self, dom, basic_xform):
        """Label images resolve through the media map."""
        result = transform_xform(
            basic_xform, backend=dom, media={"happy face.png": "/media/happy face.png"}
        )
        sources = parse_form(result).xpath("//img[@data-itext-id='/data/logo:label']/@src")
        assert list(sources) == ["/media/happy%20face.png"] * 2

    def test_form_logo(self, dom, basic_xform):
        """A form_logo.png mapping adds exactly one logo image."""
        form = parse_form(transform_xform(
            basic_xform, backend=dom, media={"form_logo.png": "/media/logo.png"}
        ))
        logos = form.xpath("//section[@class='form-logo']/img")
        assert len(logos) == 1
        assert logos[0].get("src") == "/media/logo.png"

    def test_no_form_logo(self, dom, basic_xform):
        """Without the mapping no image is added."""
        form = parse_form(transform_xform(basic_xform, backend=dom, media={"other.png": "/o.png"}))
        assert form.xpath("//section[@class='form-logo']/img") == []


class TestLanguages:
    """Language tag normalization."""

    def test_language_map(self, dom, basic_xform):
        """Changed option values are reported in the language map."""
        result = transform_xform(basic_xform, backend=dom)
        assert result.language_map == {"English": "en", "Arabic": "ar"}

    def test_options(self, dom, basic_xform):
        """Options carry tag, description and directionality."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        options = form.xpath("//select[@id='form-languages']/option")
        assert [(o.get("value"), o.get("data-dir"), o.text) for o in options] == [
            ("en", "ltr", "English"),
            ("ar", "rtl", "Arabic"),
        ]
        selector = form.xpath("//select[@id='form-languages']")[0]
        assert selector.get("data-default-lang") == "en"

    def test_lang_attributes(self, dom, basic_xform):
        """Every lang attribute follows the corrected tag."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        langs = set(form.xpath("//*[@data-itext-id]/@lang"))
        assert langs == {"en", "ar"}

    def test_no_languages(self, dom, minimal_xform):
        """Forms without translations report an empty language map."""
        result = transform_xform(minimal_xform, backend=dom)
        assert result.language_map == {}
        assert parse_form(result).xpath("//select[@id='form-languages']") == []


class TestMarkdown:
    """Markdown in labels and hints."""

    def test_rendered(self, dom, basic_xform):
        form = parse_form(transform_xform(basic_xform, backend=dom))
        label = form.xpath("//span[@class='question-label active' and @lang='en']")[0]
        assert label.xpath("string(em)") == "name"

    def test_output_placeholder_kept(self, dom, basic_xform):
        """Outputs keep their place inside rendered Markdown."""
        form = parse_form(transform_xform(basic_xform, backend=dom))
        label = form.xpath("//input[@name='/data/age']/../span[contains(@class, 'question-label')]")[0]
        assert [child.tag for child in label] == ["span", "em"]
        assert label[0].get("class") == "or-output"
        assert label[0].get("data-value") == "/data/name"
        assert label.text == "Age is "

    def test_disabled(self, dom, basic_xform):
        """With markdown off the text stays literal and no markers leak."""
        result = transform_xform(basic_xform, backend=dom, markdown=False)
        assert "<em>" not in result.form
        assert "*name*" in result.form
        assert "\ue000" not in result.form
        assert "\ue001" not in result.form

    def test_configured_default(self, dom, basic_xform):
        """Surveys that do not say follow the configured default."""
        set_config(TransformerConfig(markdown=False))
        result = transform_xform(basic_xform, backend=dom)
        assert "*name*" in result.form


class TestModel:
    """Model corrections."""

    def test_instance_id_added(self, dom, basic_xform):
        model = parse_model(transform_xform(basic_xform, backend=dom))
        assert len(model.findall("instance/data/meta/instanceID")) == 1

    def test_instance_id_reused(self, dom, itemsets_xform):
        model = parse_model(transform_xform(itemsets_xform, backend=dom))
        assert len(model.findall("instance/data/meta/instanceID")) == 1

    def test_orx_instance_id(self, dom, repeat_xform):
        """An orx:meta/orx:instanceID counts as present."""
        model = parse_model(transform_xform(repeat_xform, backend=dom))
        data = model.find("instance/data")
        assert len(data.findall(f"{{{ORX}}}meta/{{{ORX}}}instanceID")) == 1
        assert data.find("meta") is None

    def test_namespaces_reconciled(self, dom, basic_xform):
        """Declarations only the XForm root makes move to the instance root."""
        result = transform_xform(basic_xform, backend=dom)
        assert '<data xmlns:cc="http://example.org/custom"' in result.model

    def test_secondary_instances(self, dom, itemsets_xform):
        model = parse_model(transform_xform(itemsets_xform, backend=dom))
        ids = [instance.get("id") for instance in model.findall("instance")]
        assert ids == [None, "choices", "colors"]

    def test_missing_instance(self, dom):
        xform = (
            '<h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml">'
            '<h:head><h:title>x</h:title><model/></h:head><h:body/></h:html>'
        )
        with pytest.raises(MissingModelRoot):
            transform_xform(xform, backend=dom)


class TestPreprocessing:
    """Legacy preprocessing hooks."""

    def test_text_hook(self, dom, basic_xform):
        result = transform_xform(
            basic_xform, backend=dom,
            preprocess_xform=lambda text: text.replace("Basic Survey", "Renamed"),
        )
        assert parse_form(result).xpath("string(//h3)") == "Renamed"

    def test_tree_hook(self, native, basic_xform):
        """The tree hook sees the parsed XForm before any stylesheet."""
        seen = []

        def preprocess(tree):
            seen.append(tree)
            body = tree.getroot().find("{http://www.w3.org/1999/xhtml}body")
            body.set("class", "theme-plain")
            return tree

        result = transform_xform(basic_xform, backend=native, preprocess=preprocess)
        assert len(seen) == 1
        assert parse_form(result).get("class") == "or clearfix theme-plain"

    def test_tree_hook_replacement(self, native, basic_xform, minimal_xform):
        """A tree returned by the hook replaces the parsed XForm."""
        replacement = etree.ElementTree(etree.fromstring(minimal_xform.encode("utf-8")))
        result = transform_xform(basic_xform, backend=native, preprocess=lambda tree: replacement)
        assert parse_form(result).get("id") == "minimal"

    def test_tree_hook_needs_native(self, basic_xform):
        with pytest.raises(UnsupportedPreprocessing):
            transform_xform(basic_xform, backend=get_backend("host"), preprocess=lambda tree: tree)


class TestSurvey:
    """Survey handling."""

    def test_fields_cleared(self, basic_xform):
        """Transformable fields are not retained after the call."""
        survey = Survey(xform=basic_xform, media={"a.png": "/a.png"}, theme="grid", openclinica=1)
        transform(survey)
        assert survey.xform is None
        assert survey.media is None
        assert survey.markdown is None
        assert survey.openclinica is None
        assert survey.theme == "grid"

    def test_openclinica(self, dom, basic_xform):
        """OpenClinica attributes only appear when requested."""
        xform = basic_xform.replace(
            'xmlns:cc="http://example.org/custom"',
            'xmlns:cc="http://example.org/custom" xmlns:oc="http://openclinica.org/xforms"',
        ).replace('<bind nodeset="/data/name"', '<bind oc:external="clinicaldata" nodeset="/data/name"')

        plain = parse_form(transform_xform(xform, backend=dom))
        assert plain.xpath("//input[@name='/data/name']")[0].get("data-oc-external") is None

        oc = parse_form(transform_xform(xform, backend=dom, openclinica=True))
        assert oc.xpath("//input[@name='/data/name']")[0].get("data-oc-external") == "clinicaldata"


class TestErrors:
    """Failures surface as transformer errors."""

    def test_malformed_xform(self, dom):
        with pytest.raises(MalformedDocument) as exc_info:
            transform_xform("<h:html", backend=dom)
        assert exc_info.value.role is DocumentRole.SOURCE

    def test_malformed_stylesheet(self, dom, basic_xform, tmp_path):
        broken = tmp_path / "broken.xsl"
        broken.write_text("<xsl:stylesheet", encoding="utf-8")
        set_config(TransformerConfig(stylesheets=StylesheetConfig(form_xsl=str(broken))))
        reload_sheets()
        with pytest.raises(MalformedDocument) as exc_info:
            transform_xform(basic_xform, backend=dom)
        assert exc_info.value.role is DocumentRole.STYLESHEET


class TestConcurrency:
    """Concurrent transforms stay independent."""

    def test_parallel_transforms(self, native, basic_xform):
        def run(_):
            return transform_xform(basic_xform, backend=native, theme="grid")

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run, range(8)))

        assert len({result.form for result in results}) == 1
        assert len({result.model for result in results}) == 1

    def test_cache_released(self, native, basic_xform):
        """The identity cache is empty once no transform is in flight."""
        transform_xform(basic_xform, backend=native)
        assert len(native.cache) == 0
        assert native.scope.active == 0
