"""
Pieces shared by the form and the mail relay, standard library only.

- formatting: number parsing, French money/date display, document filename
- keys: attachment categories and the multipart key scheme
"""
