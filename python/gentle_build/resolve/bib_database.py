"""External BibTeX databases, so a document can \\cite entries without listing them in a thebibliography environment.

Only the entries a document actually cites end up in its bibliography,
and the same subset can be written out as a minimal .bib file.
Entry text is formatted by citeproc-py, numbering stays with the resolver.
"""

import io
from typing import Dict, List, Sequence, Set

import bibtexparser  # type: ignore[import-untyped]
import citeproc  # type: ignore
import citeproc.formatter.html  # type: ignore
import citeproc.formatter.plain  # type: ignore
import citeproc.source.bibtex  # type: ignore

from gentle_build import InlineScope
from gentle_build.build_system import BuildSystem, TextWriter
from gentle_build.doc.nodes import BibEntry, CiteprocText
from gentle_build.errors import DuplicateCitationKeyError, LoadError

# Trimmed down from the ACM SIG Proceedings style.
# Numbers and labels come from the resolver, so the bibliography layout doesn't print citation-number.
BIBLIOGRAPHY_CSL = """<?xml version="1.0"?>
<style xmlns="http://purl.org/net/xbiblio/csl" class="in-text" version="1.0" demote-non-dropping-particle="sort-only" default-locale="en-US">
  <info>
    <title>Gentle bibliography</title>
    <id>gentle-bibliography</id>
    <updated>2017-07-15T11:28:14+00:00</updated>
  </info>
  <macro name="author">
    <names variable="author">
      <name and="text" delimiter=", " delimiter-precedes-last="never"/>
      <substitute>
        <names variable="editor"/>
      </substitute>
    </names>
  </macro>
  <macro name="editor">
    <names variable="editor">
      <name and="text" delimiter=", "/>
      <label form="short" prefix=", "/>
    </names>
  </macro>
  <citation>
    <layout delimiter=", ">
      <text variable="title"/>
    </layout>
  </citation>
  <bibliography>
    <layout suffix=".">
      <group delimiter=". ">
        <text macro="author"/>
        <choose>
          <if type="article-journal">
            <group delimiter=". ">
              <text variable="title"/>
              <group delimiter=", ">
                <text variable="container-title" font-style="italic"/>
                <group>
                  <text variable="volume"/>
                  <text variable="issue" prefix="(" suffix=")"/>
                </group>
                <text variable="page"/>
              </group>
            </group>
          </if>
          <else-if type="chapter paper-conference" match="any">
            <group delimiter=". ">
              <text variable="title"/>
              <group delimiter=", ">
                <text variable="container-title" font-style="italic"/>
                <text macro="editor"/>
                <text variable="publisher"/>
                <text variable="page"/>
              </group>
            </group>
          </else-if>
          <else-if type="thesis report" match="any">
            <group delimiter=". ">
              <text variable="title" font-style="italic"/>
              <text variable="number" prefix="Technical Report #"/>
              <text variable="publisher"/>
            </group>
          </else-if>
          <else-if type="book" match="any">
            <group delimiter=". ">
              <text variable="title" font-style="italic"/>
              <text variable="publisher"/>
            </group>
          </else-if>
          <else>
            <group delimiter=". ">
              <text variable="title"/>
              <text variable="container-title" font-style="italic"/>
              <text variable="publisher"/>
            </group>
          </else>
        </choose>
      </group>
      <date variable="issued" prefix=", ">
        <date-part name="year"/>
      </date>
    </layout>
  </bibliography>
</style>
"""


def _make_parser() -> bibtexparser.bparser.BibTexParser:
    # A BibTexParser carries state between parses, so each file gets a fresh one
    return bibtexparser.bparser.BibTexParser(
        ignore_nonstandard_types=False,
        interpolate_strings=False,
        common_strings=False,
        add_missing_from_crossref=False,
    )


class BibTexDatabase:
    paths: List[str]
    dbs: List[bibtexparser.bibdatabase.BibDatabase]
    entries: Dict[str, Dict[str, str]]
    """Every entry of every database, keyed by citation key, in file order."""
    texts: Dict[str, CiteprocText]

    def __init__(
        self, build_sys: BuildSystem, paths: Sequence[str], encoding: str = "utf-8"
    ) -> None:
        self.paths = list(paths)
        self.dbs = []
        self.entries = {}
        self.texts = {}
        for path in self.paths:
            text = build_sys.read_text(path, encoding)
            db = bibtexparser.loads(text, _make_parser())
            if not db.entries:
                raise LoadError(path, "no BibTeX entries")
            for e in db.entries:
                if e["ID"] in self.entries:
                    raise DuplicateCitationKeyError(e["ID"], None)
                self.entries[e["ID"]] = e
            self.dbs.append(db)
            self.texts.update(format_entries(path, text, [e["ID"] for e in db.entries]))

    def has_entry(self, key: str) -> bool:
        return key in self.entries

    def bib_entries(self) -> List[BibEntry]:
        return [
            BibEntry(key=key, text=InlineScope((self.texts[key],)), location=None)
            for key in self.entries
        ]

    def _generate_clean_entry(self, e: Dict[str, str]) -> Dict[str, str]:
        e = e.copy()
        if "file" in e:
            del e["file"]
        if "abstract" in e:
            del e["abstract"]
        return e

    def write_minimal_db(self, out: TextWriter, used: Set[str]) -> None:
        """Write the entries in `used` (and every @string/@preamble/@comment) as a single BibTeX file."""
        minimal_db = bibtexparser.bibdatabase.BibDatabase()

        for db in self.dbs:
            minimal_db.comments.extend(db.comments)
            minimal_db.preambles.extend(db.preambles)
            minimal_db.strings.update(db.strings)
            minimal_db.entries.extend(
                self._generate_clean_entry(e) for e in db.entries if e["ID"] in used
            )

        out.write(bibtexparser.dumps(minimal_db))


def format_entries(path: str, text: str, keys: Sequence[str]) -> Dict[str, CiteprocText]:
    """Format every entry in a BibTeX file with citeproc-py, once as plain text and once as HTML."""
    try:
        bib_source = citeproc.source.bibtex.BibTeX(io.StringIO(text))
    except KeyError as e:
        # citeproc's BibTeX backend doesn't know BibLaTeX types like @online
        raise LoadError(path, f"citeproc-py can't read BibTeX entry type {e}") from e

    formatted: Dict[str, Dict[str, str]] = {}
    for name, formatter in (
        ("plain", citeproc.formatter.plain),
        ("html", citeproc.formatter.html),
    ):
        bib_style = citeproc.CitationStylesStyle(
            io.StringIO(BIBLIOGRAPHY_CSL), validate=False
        )
        bib = citeproc.CitationStylesBibliography(bib_style, bib_source, formatter)
        # citeproc stores the keys as all lowercase
        for key in keys:
            bib.register(citeproc.Citation([citeproc.CitationItem(key.lower())]))
        for key, item in zip(bib.keys, bib.bibliography()):
            formatted.setdefault(key, {})[name] = str(item)

    texts = {}
    for key in keys:
        if key.lower() not in formatted:
            raise LoadError(path, f"citeproc-py couldn't format entry '{key}'")
        f = formatted[key.lower()]
        texts[key] = CiteprocText(plain=f["plain"], html=f["html"])
    return texts
